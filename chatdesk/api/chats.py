# chatdesk/api/chats.py
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chatdesk.api.responses import get_notifier, get_store, ok
from chatdesk.db import ChatStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chats"])


# --- Schemas
class ConversationOut(BaseModel):
    id: int
    user_id: int
    name: str
    avatar: Optional[str]
    type: str
    last_message: Optional[str]
    last_time: Optional[str]
    last_timestamp: int = 0
    unread: int = 0
    muted: bool = False
    class Config:
        from_attributes = True

class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    sender_type: str
    sender_name: Optional[str]
    content: str
    format: str = "text"
    created_at: Optional[str]
    class Config:
        from_attributes = True

class ConversationRef(BaseModel):
    conversation_id: int = Field(alias="conversationId")

class SendMessageIn(BaseModel):
    conversation_id: int = Field(alias="conversationId")
    sender_id: int = Field(alias="senderId")
    sender_type: Literal["me", "other"] = Field(alias="senderType")
    content: str = Field(min_length=1)
    format: Literal["text", "markdown"] = "text"

class BotSendIn(BaseModel):
    user_id: int = Field(alias="userId")
    content: str = Field(min_length=1)
    format: Literal["text", "markdown"] = "text"


def _conversation_out(row: dict) -> dict:
    row = {**row, "last_timestamp": row.get("last_timestamp") or 0, "unread": row.get("unread") or 0}
    return ConversationOut.model_validate(row).model_dump()


def _message_out(row: dict) -> dict:
    row = {**row, "format": row.get("format") or "text"}
    return MessageOut.model_validate(row).model_dump()


@router.post("/conversations")
def list_conversations(store: ChatStore = Depends(get_store)):
    return ok([_conversation_out(r) for r in store.list_conversations()])

@router.post("/messages")
def list_messages(body: ConversationRef, store: ChatStore = Depends(get_store)):
    return ok([_message_out(r) for r in store.list_messages(body.conversation_id)])

@router.post("/send-message")
def send_message(body: SendMessageIn, store: ChatStore = Depends(get_store)):
    msg_id = store.send_message(
        body.conversation_id, body.sender_id, body.sender_type, body.content, body.format,
        count_unread=body.sender_type == "other",
    )
    return ok({"id": msg_id})

@router.post("/clear-unread")
def clear_unread(body: ConversationRef, store: ChatStore = Depends(get_store)):
    store.clear_unread(body.conversation_id)
    return ok()

@router.post("/toggle-mute")
def toggle_mute(body: ConversationRef, store: ChatStore = Depends(get_store)):
    return ok({"muted": store.toggle_muted(body.conversation_id)})

@router.post("/total-unread")
def total_unread(store: ChatStore = Depends(get_store)):
    return ok({"total": store.get_total_unread()})

@router.post("/bot/send")
def bot_send(body: BotSendIn, store: ChatStore = Depends(get_store), notifier=Depends(get_notifier)):
    delivery = store.deliver_bot_message(body.user_id, body.content, body.format)

    # message and unread are committed; a failed popup must not fail the request
    if not delivery.muted and notifier is not None:
        try:
            user = store.get_user(body.user_id)
            notifier.notify(
                user.name if user else str(body.user_id), body.content,
                delivery.conversation_id, avatar=user.avatar if user else None,
            )
        except Exception:
            logger.exception("Notification for conversation %d failed", delivery.conversation_id)

    return ok({"messageId": delivery.message_id, "conversationId": delivery.conversation_id})
