"""
Events handed to the broadcast layer after state changes.

The core only builds these; delivering them to viewers is the broadcaster's
job and nothing here waits on it.
"""
from dataclasses import dataclass
from typing import Any, Dict, Union

from chathook.models.message import Message, MessageStatus

MESSAGE_CREATED = "message:new"
STATUS_CHANGED = "message:status_update"
MESSAGE_DELETED = "message:deleted"


@dataclass(frozen=True)
class MessageCreated:
    message: Dict[str, Any]

    name = MESSAGE_CREATED

    @classmethod
    def from_message(cls, message: Message) -> "MessageCreated":
        return cls(message=message.to_dict())

    @property
    def conversation_key(self) -> str:
        return self.message["conversation_key"]

    def to_data(self) -> Dict[str, Any]:
        return dict(self.message)


@dataclass(frozen=True)
class StatusChanged:
    conversation_key: str
    identifier_echo: str
    new_status: MessageStatus
    message_id: str

    name = STATUS_CHANGED

    def to_data(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "identifier": self.identifier_echo,
            "conversation_key": self.conversation_key,
            "status": self.new_status.value,
        }


@dataclass(frozen=True)
class MessageDeleted:
    conversation_key: str
    message_id: str

    name = MESSAGE_DELETED

    def to_data(self) -> Dict[str, Any]:
        return {"message_id": self.message_id, "conversation_key": self.conversation_key}


Event = Union[MessageCreated, StatusChanged, MessageDeleted]
