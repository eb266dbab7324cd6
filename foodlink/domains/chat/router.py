from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from foodlink.core.deps import get_db, get_principal
from foodlink.core.security import Principal
from foodlink.domains.chat.models import Chat, ChatMessage
from foodlink.domains.chat.schemas import ChatListOut, ChatOpenIn, ChatOut, MessageIn, MessageListOut, MessageOut
from foodlink.domains.chat.service import (
    Party,
    can_send,
    get_conversation,
    get_or_create_conversation,
    is_archived_for,
    list_conversations,
    list_messages,
    send_message,
)
from foodlink.domains.identity.service import get_user


router = APIRouter(prefix="/chats")


def chat_out(db: Session, chat: Chat, principal: Principal) -> ChatOut:
    other_id, other_name, other_role = chat.other_of(principal.sub)
    return ChatOut(
        id=chat.id,
        other_user_id=other_id,
        other_user_name=other_name,
        other_user_role=other_role.value,
        delivery_surplus_id=chat.delivery_surplus_id,
        last_message=chat.last_message,
        last_message_at=(chat.last_message_at.isoformat() if chat.last_message_at else None),
        archived=is_archived_for(db, chat, principal.sub),
        can_send=can_send(db, chat, principal.sub),
    )


def message_out(msg: ChatMessage) -> MessageOut:
    return MessageOut(
        id=msg.id,
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        sender_role=msg.sender_role,
        text=msg.text,
        sent_at=msg.sent_at.isoformat(),
    )


@router.get("", response_model=ChatListOut)
def my_chats(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> ChatListOut:
    chats = list_conversations(db, user_id=principal.sub, role=principal.role)
    return ChatListOut(chats=[chat_out(db, c, principal) for c in chats])


@router.post("", response_model=ChatOut)
def open_chat(payload: ChatOpenIn, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> ChatOut:
    me = Party.of(get_user(db, principal.sub))
    other = Party.of(get_user(db, payload.other_user_id))
    chat = get_or_create_conversation(db, me=me, other=other, linked_surplus_id=payload.delivery_surplus_id)
    return chat_out(db, chat, principal)


@router.get("/{chat_id}", response_model=ChatOut)
def chat_detail(chat_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> ChatOut:
    return chat_out(db, get_conversation(db, chat_id=chat_id, user_id=principal.sub), principal)


@router.get("/{chat_id}/messages", response_model=MessageListOut)
def chat_messages(chat_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> MessageListOut:
    return MessageListOut(messages=[message_out(m) for m in list_messages(db, chat_id=chat_id, user_id=principal.sub)])


@router.post("/{chat_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def post_message(
    chat_id: str,
    payload: MessageIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> MessageOut:
    sender = get_user(db, principal.sub)
    msg = send_message(db, chat_id=chat_id, sender_id=sender.id, sender_role=sender.user_type, text=payload.text)
    return message_out(msg)
