from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from Advisor.crud import conversations as conversation_crud
from Advisor.crud import memberships as membership_crud
from Advisor.errors import AlreadyOwned, CopyFailed, CreateFailed, ForkError, NotAMember, NotShared, SourceNotFound
from Advisor.models.conversation_model import Conversation
from Advisor.services.access import ForkDecision, authorize_fork


logger = logging.getLogger(__name__)

FORK_TITLE_SUFFIX = " (Copy)"

_DECISION_ERRORS = {
    ForkDecision.ALREADY_OWNED: AlreadyOwned,
    ForkDecision.NOT_SHARED: NotShared,
    ForkDecision.NOT_A_MEMBER: NotAMember,
}


class ForkStrategy(str, Enum):
    # Create + copy inside one savepoint and a single commit
    TRANSACTION = "transaction"
    # Commit each step; undo a failed copy by deleting the new conversation
    COMPENSATE = "compensate"


def _get_fork_strategy() -> ForkStrategy:
    raw = (os.getenv("FORK_STRATEGY") or ForkStrategy.TRANSACTION.value).strip().lower()
    try:
        return ForkStrategy(raw)
    except ValueError:
        logger.warning("Unknown FORK_STRATEGY %r; falling back to %s", raw, ForkStrategy.TRANSACTION.value)
        return ForkStrategy.TRANSACTION


@dataclass(frozen=True)
class ForkResult:
    conversation: Conversation
    message_count: int


# Copies a shared conversation, with its full ordered history, into a private conversation owned by the requester
class ForkService:
    def __init__(self, db: Session, *, strategy: Optional[ForkStrategy] = None):
        self.db = db
        self.strategy = ForkStrategy(strategy) if strategy else _get_fork_strategy()

    def fork(self, source_conversation_id: str, requester_id: str) -> ForkResult:
        source = conversation_crud.get_conversation(self.db, source_conversation_id)
        if source is None:
            raise SourceNotFound()

        membership = membership_crud.get_membership(self.db, source.organization_id, requester_id)
        decision = authorize_fork(requester_id, source, [membership] if membership else [])
        if decision is not ForkDecision.APPROVED:
            logger.info("Fork of %s by %s rejected: %s", source_conversation_id, requester_id, decision.value)
            raise _DECISION_ERRORS[decision]()

        if self.strategy is ForkStrategy.COMPENSATE:
            result = self._fork_with_compensation(source, requester_id)
        else:
            result = self._fork_in_transaction(source, requester_id)

        logger.info(
            "Forked conversation %s into %s for %s (%d messages, %s)",
            source_conversation_id,
            result.conversation.id,
            requester_id,
            result.message_count,
            self.strategy.value,
        )
        return result

    def _fork_in_transaction(self, source: Conversation, requester_id: str) -> ForkResult:
        source_id = source.id
        try:
            with self.db.begin_nested():
                forked = self._create_fork_record(source, requester_id)
                copied = self._copy_messages(source_id, forked.id)
        except ForkError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Savepoint failed while forking %s", source_id)
            raise CopyFailed() from exc

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed while forking %s", source_id)
            raise CopyFailed() from exc

        self.db.refresh(forked)
        return ForkResult(conversation=forked, message_count=copied)

    def _fork_with_compensation(self, source: Conversation, requester_id: str) -> ForkResult:
        source_id = source.id
        try:
            forked = self._create_fork_record(source, requester_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed while creating fork of %s", source_id)
            raise CreateFailed() from exc
        except ForkError:
            self.db.rollback()
            raise
        forked_id = forked.id

        try:
            copied = self._copy_messages(source_id, forked_id)
            self.db.commit()
        except (ForkError, SQLAlchemyError) as exc:
            self.db.rollback()
            self._compensate(forked_id)
            if isinstance(exc, ForkError):
                raise
            raise CopyFailed() from exc

        self.db.refresh(forked)
        return ForkResult(conversation=forked, message_count=copied)

    def _create_fork_record(self, source: Conversation, requester_id: str) -> Conversation:
        try:
            return conversation_crud.create_conversation(
                self.db,
                user_id=requester_id,
                organization_id=source.organization_id,
                advisor_mode_id=source.advisor_mode_id,
                title=f"{source.title}{FORK_TITLE_SUFFIX}",
                is_shared=False,
                forked_from_conversation_id=source.id,
            )
        except SQLAlchemyError as exc:
            logger.exception("Error creating forked conversation from %s", source.id)
            raise CreateFailed() from exc

    # Positions are copied verbatim, never renumbered
    def _copy_messages(self, source_id: str, forked_id: str) -> int:
        try:
            originals = conversation_crud.list_messages(self.db, source_id)
        except SQLAlchemyError as exc:
            logger.exception("Error fetching messages of %s for fork %s", source_id, forked_id)
            raise CopyFailed() from exc

        if not originals:
            return 0

        copies = [
            {
                "role": m.role,
                "content": m.content,
                "sections": m.sections,
                "position": m.position,
            }
            for m in originals
        ]
        try:
            conversation_crud.insert_messages(self.db, forked_id, copies)
        except SQLAlchemyError as exc:
            logger.exception("Error inserting copied messages into fork %s", forked_id)
            raise CopyFailed() from exc
        return len(copies)

    # Best effort: a failed cleanup is logged as an orphan and never replaces the original error
    def _compensate(self, forked_id: str) -> None:
        try:
            conversation_crud.delete_conversation(self.db, forked_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Compensating delete failed; orphaned forked conversation %s must be removed manually",
                forked_id,
                exc_info=True,
            )
            return
        logger.warning("Deleted partially forked conversation %s after copy failure", forked_id)
