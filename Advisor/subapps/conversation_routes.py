from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from Advisor.auth import get_requester_id
from Advisor.database import get_db
from Advisor.schemas.conversation import (
    ConversationCreate,
    ConversationDetailOut,
    ConversationEnvelope,
    ConversationListOut,
    ConversationOut,
    ConversationUpdate,
    ForkOut,
    MessageCreate,
    MessageEnvelope,
    MessageOut,
    PaginationOut,
)
from Advisor.services.conversation_service import ConversationService
from Advisor.services.fork_service import ForkService
from Advisor.services.message_service import MessageService


router = APIRouter(prefix="/conversations", tags=["conversations"])


# Lists the requester's own conversations plus those shared in the organization
@router.get("")
def list_conversations(
    organization_id: str = Query(..., min_length=1),
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> ConversationListOut:
    svc = ConversationService(db)
    conversations = svc.list_conversations(requester_id=requester_id, organization_id=organization_id)
    return ConversationListOut(conversations=[ConversationOut.model_validate(c) for c in conversations])


# Starts a new conversation owned by the requester
@router.post("")
def create_conversation(
    payload: ConversationCreate,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> ConversationEnvelope:
    svc = ConversationService(db)
    conv = svc.create_conversation(
        requester_id=requester_id,
        organization_id=payload.organization_id,
        advisor_mode_id=payload.advisor_mode_id,
        title=payload.title,
        is_shared=payload.is_shared,
    )
    return ConversationEnvelope(conversation=ConversationOut.model_validate(conv))


# Retrieves a conversation with its messages; pass `limit` to page through long histories
@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> ConversationDetailOut:
    svc = ConversationService(db)
    view = svc.get_conversation(requester_id=requester_id, conversation_id=conversation_id, limit=limit, offset=offset)
    pagination = None
    if view.page is not None:
        pagination = PaginationOut(
            total=view.page.total,
            limit=view.page.limit,
            offset=view.page.offset,
            has_more=view.page.has_more,
        )
    return ConversationDetailOut(
        conversation=ConversationOut.model_validate(view.conversation),
        messages=[MessageOut.model_validate(m) for m in view.messages],
        pagination=pagination,
    )


# Renames or (un)shares a conversation; owner only
@router.patch("/{conversation_id}")
def update_conversation(
    conversation_id: str,
    payload: ConversationUpdate,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> ConversationEnvelope:
    svc = ConversationService(db)
    conv = svc.update_conversation(
        requester_id=requester_id,
        conversation_id=conversation_id,
        title=payload.title,
        is_shared=payload.is_shared,
    )
    return ConversationEnvelope(conversation=ConversationOut.model_validate(conv))


@router.delete("/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: str,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> Response:
    svc = ConversationService(db)
    svc.delete_conversation(requester_id=requester_id, conversation_id=conversation_id)
    return Response(status_code=204)


# Appends a chat turn at the next position
@router.post("/{conversation_id}/messages")
def add_message(
    conversation_id: str,
    payload: MessageCreate,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> MessageEnvelope:
    svc = MessageService(db)
    msg = svc.append(
        conversation_id,
        payload.role,
        payload.content,
        payload.sections,
        requester_id=requester_id,
    )
    return MessageEnvelope(message=MessageOut.model_validate(msg))


# Copies a shared conversation into a private one owned by the requester
@router.post("/{conversation_id}/fork")
def fork_conversation(
    conversation_id: str,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> ForkOut:
    svc = ForkService(db)
    result = svc.fork(conversation_id, requester_id)
    return ForkOut(
        conversation=ConversationOut.model_validate(result.conversation),
        message_count=result.message_count,
    )
