from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# One named block of a structured assistant answer
class MessageSection(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str
    content: str = ""


# Request body for starting a conversation in an organization
class ConversationCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    organization_id: str = Field(min_length=1)
    advisor_mode_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=255)
    is_shared: bool = False


# Owner edits; anything else in the body (e.g. organization_id) is ignored
class ConversationUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_shared: Optional[bool] = None


# Request body for appending a message; content may be omitted when sections carry the answer
class MessageCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    role: str
    content: Optional[str] = None
    sections: Optional[List[MessageSection]] = None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    organization_id: str
    advisor_mode_id: str
    title: str
    is_shared: bool
    forked_from_conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    conversation_id: str
    role: str
    content: str
    sections: Optional[List[MessageSection]] = None
    position: int
    created_at: Optional[datetime] = None


class PaginationOut(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


# Conversation plus (a page of) its messages
class ConversationDetailOut(BaseModel):
    conversation: ConversationOut
    messages: List[MessageOut]
    pagination: Optional[PaginationOut] = None


class ConversationListOut(BaseModel):
    conversations: List[ConversationOut]


class ConversationEnvelope(BaseModel):
    conversation: ConversationOut


class MessageEnvelope(BaseModel):
    message: MessageOut


# Result of forking: the new private conversation and how many messages were copied
class ForkOut(BaseModel):
    conversation: ConversationOut
    message_count: int


# Error body for every tagged service error
class ErrorOut(BaseModel):
    error: str
    detail: str
