from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from Advisor.crud import conversations as conversation_crud
from Advisor.crud import memberships as membership_crud
from Advisor.errors import (
    AccessDenied,
    ConversationNotFound,
    CreateFailed,
    DeleteFailed,
    NotAMember,
    UpdateFailed,
)
from Advisor.models.conversation_model import Conversation, ConversationMessage
from Advisor.services.access import can_read, is_owner


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessagePage:
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass(frozen=True)
class ConversationView:
    conversation: Conversation
    messages: list[ConversationMessage]
    page: Optional[MessagePage] = None


# Owner-facing conversation operations; every call re-checks access against storage
class ConversationService:
    def __init__(self, db: Session):
        self.db = db

    def _require_membership(self, organization_id: str, user_id: str):
        membership = membership_crud.get_membership(self.db, organization_id, user_id)
        if membership is None:
            raise NotAMember()
        return membership

    def _get_owned(self, requester_id: str, conversation_id: str) -> Conversation:
        conv = conversation_crud.get_conversation(self.db, conversation_id)
        if conv is None:
            raise ConversationNotFound()
        if not is_owner(requester_id, conv):
            raise AccessDenied()
        return conv

    def list_conversations(self, *, requester_id: str, organization_id: str) -> list[Conversation]:
        self._require_membership(organization_id, requester_id)
        return conversation_crud.list_visible_conversations(self.db, organization_id, requester_id)

    def create_conversation(
        self,
        *,
        requester_id: str,
        organization_id: str,
        advisor_mode_id: str,
        title: str,
        is_shared: bool = False,
    ) -> Conversation:
        self._require_membership(organization_id, requester_id)

        try:
            conv = conversation_crud.create_conversation(
                self.db,
                user_id=requester_id,
                organization_id=organization_id,
                advisor_mode_id=advisor_mode_id,
                title=title,
                is_shared=is_shared,
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error creating conversation in %s", organization_id)
            raise CreateFailed() from exc
        self.db.refresh(conv)
        return conv

    def get_conversation(
        self,
        *,
        requester_id: str,
        conversation_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ConversationView:
        conv = conversation_crud.get_conversation(self.db, conversation_id)
        if conv is None:
            raise ConversationNotFound()
        if not is_owner(requester_id, conv):
            membership = membership_crud.get_membership(self.db, conv.organization_id, requester_id)
            if not can_read(requester_id, conv, [membership] if membership else []):
                raise AccessDenied()

        messages = conversation_crud.list_messages(self.db, conversation_id, limit=limit, offset=offset)
        page = None
        if limit is not None:
            page = MessagePage(
                total=conversation_crud.count_messages(self.db, conversation_id),
                limit=limit,
                offset=offset,
            )
        return ConversationView(conversation=conv, messages=messages, page=page)

    def update_conversation(
        self,
        *,
        requester_id: str,
        conversation_id: str,
        title: Optional[str] = None,
        is_shared: Optional[bool] = None,
    ) -> Conversation:
        conv = self._get_owned(requester_id, conversation_id)
        try:
            conv = conversation_crud.update_conversation(self.db, conv, title=title, is_shared=is_shared)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error updating conversation %s", conversation_id)
            raise UpdateFailed() from exc
        self.db.refresh(conv)
        return conv

    def delete_conversation(self, *, requester_id: str, conversation_id: str) -> None:
        self._get_owned(requester_id, conversation_id)
        try:
            conversation_crud.delete_conversation(self.db, conversation_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Error deleting conversation %s", conversation_id)
            raise DeleteFailed() from exc
        logger.info("Conversation %s deleted by %s", conversation_id, requester_id)
