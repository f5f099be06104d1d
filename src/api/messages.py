"""Messaging endpoints.

POST /api/v1/messages                                - Send a message
GET  /api/v1/messages/conversations                  - Conversations grouped by contact
GET  /api/v1/messages/conversations/{contact_id}     - Messages exchanged with one contact
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.schemas import MessageResponse, UserSummary
from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.database import get_db_session
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.messaging import MessagingRelay

router = APIRouter(prefix="/messages", tags=["messages"])


class MessageCreate(BaseModel):
    recipient_id: uuid.UUID
    application_id: uuid.UUID
    body: str = Field(..., min_length=1, max_length=10_000)


class ConversationResponse(BaseModel):
    contact: UserSummary
    messages: list[MessageResponse]


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: MessageCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> MessageResponse:
    message = await MessagingRelay(db, dispatcher).send(
        current_user.id,
        body.recipient_id,
        body.application_id,
        body.body,
    )
    return MessageResponse.model_validate(message)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> list[ConversationResponse]:
    conversations = await MessagingRelay(db, dispatcher).conversations(current_user.id)
    return [
        ConversationResponse(
            contact=UserSummary.model_validate(c.contact),
            messages=[MessageResponse.model_validate(m) for m in c.messages],
        )
        for c in conversations
    ]


@router.get("/conversations/{contact_id}", response_model=list[MessageResponse])
async def get_conversation(
    contact_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> list[MessageResponse]:
    messages = await MessagingRelay(db, dispatcher).conversation(current_user.id, contact_id)
    return [MessageResponse.model_validate(m) for m in messages]
