import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func

from Advisor.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# Stores conversation-level metadata (owner, organization, sharing, fork provenance)
class Conversation(Base):
    __tablename__ = "conversations"

    __table_args__ = (
        Index("ix_conversations_organization_id_updated_at", "organization_id", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), index=True, nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    advisor_mode_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    is_shared = Column(Boolean, nullable=False, default=False)
    # Provenance only: a deleted source leaves its forks in place
    forked_from_conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# Stores individual messages; `position` orders them within a conversation
class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    __table_args__ = (
        UniqueConstraint("conversation_id", "position", name="ux_conversation_messages_conversation_id_position"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), index=True, nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False, default="")
    sections = Column(JSON, nullable=True)  # [{"name": ..., "content": ...}, ...]
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
