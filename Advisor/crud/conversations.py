from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from Advisor.models.conversation_model import Conversation, ConversationMessage


# Get a conversation by id; `for_update` locks the row where the backend supports it
def get_conversation(db: Session, conversation_id: str, *, for_update: bool = False) -> Optional[Conversation]:
    stmt = select(Conversation).where(Conversation.id == conversation_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


# Create a conversation row and flush so its id is assigned
def create_conversation(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    advisor_mode_id: str,
    title: str,
    is_shared: bool = False,
    forked_from_conversation_id: Optional[str] = None,
) -> Conversation:
    conv = Conversation(
        user_id=user_id,
        organization_id=organization_id,
        advisor_mode_id=advisor_mode_id,
        title=title,
        is_shared=is_shared,
        forked_from_conversation_id=forked_from_conversation_id,
    )
    db.add(conv)
    db.flush()
    return conv


# Delete a conversation together with its messages
def delete_conversation(db: Session, conversation_id: str) -> bool:
    db.execute(delete(ConversationMessage).where(ConversationMessage.conversation_id == conversation_id))
    result = db.execute(delete(Conversation).where(Conversation.id == conversation_id))
    db.flush()
    return result.rowcount > 0


# Conversations a user can see in an organization: their own plus shared ones, most recently updated first
def list_visible_conversations(db: Session, organization_id: str, user_id: str) -> list[Conversation]:
    stmt = (
        select(Conversation)
        .where(
            Conversation.organization_id == organization_id,
            or_(Conversation.user_id == user_id, Conversation.is_shared.is_(True)),
        )
        .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
    )
    return list(db.execute(stmt).scalars().all())


# Apply owner edits; organization and ownership are never touched here
def update_conversation(
    db: Session,
    conv: Conversation,
    *,
    title: Optional[str] = None,
    is_shared: Optional[bool] = None,
) -> Conversation:
    if title is not None:
        conv.title = title
    if is_shared is not None:
        conv.is_shared = is_shared
    conv.updated_at = func.now()
    db.flush()
    db.refresh(conv)
    return conv


def touch_conversation(db: Session, conversation_id: str) -> None:
    stmt = (
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    db.execute(stmt)


# Messages in read order; limit/offset page through them
def list_messages(
    db: Session,
    conversation_id: str,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[ConversationMessage]:
    stmt = (
        select(ConversationMessage)
        .where(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.position.asc())
    )
    if limit is not None:
        stmt = stmt.offset(offset).limit(limit)
    elif offset:
        stmt = stmt.offset(offset)
    return list(db.execute(stmt).scalars().all())


def count_messages(db: Session, conversation_id: str) -> int:
    stmt = select(func.count(ConversationMessage.id)).where(ConversationMessage.conversation_id == conversation_id)
    return int(db.execute(stmt).scalar_one())


# Highest position in a conversation, or -1 when it has no messages
def get_max_position(db: Session, conversation_id: str) -> int:
    stmt = select(func.max(ConversationMessage.position)).where(ConversationMessage.conversation_id == conversation_id)
    value = db.execute(stmt).scalar_one_or_none()
    return -1 if value is None else int(value)


def insert_message(
    db: Session,
    conversation_id: str,
    *,
    role: str,
    content: str,
    position: int,
    sections: Optional[list[dict[str, Any]]] = None,
) -> ConversationMessage:
    msg = ConversationMessage(
        conversation_id=conversation_id,
        role=role,
        content=content,
        sections=sections,
        position=position,
    )
    db.add(msg)
    db.flush()
    return msg


# Bulk insert; each item carries role/content/sections/position and gets a fresh identity
def insert_messages(db: Session, conversation_id: str, messages: Iterable[dict[str, Any]]) -> int:
    rows = [
        ConversationMessage(
            conversation_id=conversation_id,
            role=m["role"],
            content=m.get("content") or "",
            sections=m.get("sections"),
            position=m["position"],
        )
        for m in messages
    ]
    if not rows:
        return 0
    db.add_all(rows)
    db.flush()
    return len(rows)
