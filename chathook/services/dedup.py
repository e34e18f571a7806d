"""
Duplicate detection for incoming messages.
"""
from typing import Optional

from chathook.models.message import Message
from chathook.services.normalizer import MessageDraft
from chathook.services.repository import MessageRepository


def find_existing(repository: MessageRepository, draft: MessageDraft) -> Optional[Message]:
    """
    Return a stored message sharing any identifier with ``draft``.

    Every id the draft carries is checked against both stored identifier
    columns, since dialects disagree on which slot an id belongs in. A draft
    without ids never matches anything and is always inserted.
    """
    values = draft.identifiers.values()
    if not values:
        return None
    return repository.find_by_identifiers(values)
