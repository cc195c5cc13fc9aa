from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from Advisor.crud import conversations as conversation_crud
from Advisor.errors import AccessDenied, AppendFailed, ConversationNotFound, InvalidMessage
from Advisor.models.conversation_model import ConversationMessage
from Advisor.services.access import is_owner


logger = logging.getLogger(__name__)

# Bounded retries when a double submit races for the same position
APPEND_MAX_ATTEMPTS = 3


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _normalize_sections(sections: Optional[list[Any]]) -> Optional[list[dict[str, str]]]:
    if sections is None:
        return None
    normalized = []
    for section in sections:
        if hasattr(section, "model_dump"):
            section = section.model_dump()
        if not isinstance(section, dict) or "name" not in section:
            raise InvalidMessage("Each section needs a name and content")
        normalized.append({"name": str(section["name"]), "content": str(section.get("content") or "")})
    return normalized


# Appends messages at the next position of a conversation
class MessageService:
    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        conversation_id: str,
        role: str,
        content: Optional[str],
        sections: Optional[list[Any]] = None,
        *,
        requester_id: Optional[str] = None,
    ) -> ConversationMessage:
        try:
            role = MessageRole(role).value
        except ValueError:
            raise InvalidMessage(f"Unsupported role: {role!r}") from None
        if content is None and not sections:
            raise InvalidMessage()
        sections = _normalize_sections(sections) or None

        # Row lock serializes appends on backends that support it
        conv = conversation_crud.get_conversation(self.db, conversation_id, for_update=True)
        if conv is None:
            raise ConversationNotFound()
        if requester_id is not None and not is_owner(requester_id, conv):
            raise AccessDenied()

        for attempt in range(1, APPEND_MAX_ATTEMPTS + 1):
            try:
                with self.db.begin_nested():
                    position = conversation_crud.get_max_position(self.db, conversation_id) + 1
                    msg = conversation_crud.insert_message(
                        self.db,
                        conversation_id,
                        role=role,
                        content=content or "",
                        sections=sections,
                        position=position,
                    )
                    conversation_crud.touch_conversation(self.db, conversation_id)
            except IntegrityError:
                logger.warning(
                    "Position collision appending to %s (attempt %d/%d)",
                    conversation_id,
                    attempt,
                    APPEND_MAX_ATTEMPTS,
                )
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Error inserting message into %s", conversation_id)
                raise AppendFailed() from exc

            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Commit failed appending to %s", conversation_id)
                raise AppendFailed() from exc
            self.db.refresh(msg)
            return msg

        self.db.rollback()
        raise AppendFailed()
