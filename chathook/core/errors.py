"""
Error taxonomy for payload ingestion and conversation state.

Each error carries a short machine-readable ``kind`` that ends up in batch
results, so callers can count failures without matching on messages.
"""
from typing import Any, Optional


class ChatHookError(Exception):
    """Base class for all chathook domain errors."""

    kind = "error"

    def __init__(self, detail: str, *, payload: Optional[Any] = None):
        super().__init__(detail)
        self.detail = detail
        self.payload = payload


class UnrecognizedPayload(ChatHookError):
    """No classification rule matched and the payload has no message-like field."""

    kind = "unrecognized_payload"


class UnresolvableConversation(ChatHookError):
    """A message-like entry names no conversation key anywhere."""

    kind = "unresolvable_conversation"


class NoIdentifier(ChatHookError):
    """A status update carries no usable message identifier."""

    kind = "no_identifier"


class InvalidStatus(ChatHookError):
    """A status update names a status outside the known set."""

    kind = "invalid_status"


class DuplicateIdentifier(ChatHookError):
    """The store rejected an insert because an identifier is already taken."""

    kind = "duplicate_identifier"


class InvalidContent(ChatHookError):
    """A locally composed message has no usable body or an unknown content type."""

    kind = "invalid_content"


class MessageNotFound(ChatHookError):
    kind = "message_not_found"
