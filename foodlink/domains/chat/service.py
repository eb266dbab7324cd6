import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from foodlink.core.db import utcnow
from foodlink.core.errors import AuthorizationError, ChatArchivedError, GuardViolation, NotFoundError, ValidationError
from foodlink.core.roles import PartyRole, normalize_role
from foodlink.domains.chat.models import Chat, ChatMessage, pair_key
from foodlink.domains.contact.rules import ROLE_FIELD
from foodlink.domains.contact.service import active_link_for, contact_allowed
from foodlink.domains.identity.models import User
from foodlink.domains.surplus import store as surplus_store
from foodlink.domains.surplus.models import TERMINAL_STATUSES, SurplusRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Party:
    id: str
    name: str
    role: PartyRole

    @classmethod
    def of(cls, user: User) -> "Party":
        return cls(id=user.id, name=user.display_name, role=user.role)


def _involves(record: SurplusRecord, party: Party) -> bool:
    return getattr(record, ROLE_FIELD[party.role]) == party.id


def _link_is_open(db: Session, surplus_id: str | None) -> bool:
    if not surplus_id:
        return False
    rec = db.get(SurplusRecord, surplus_id, populate_existing=True)
    return rec is not None and rec.status not in TERMINAL_STATUSES


def get_or_create_conversation(
    db: Session,
    *,
    me: Party,
    other: Party,
    linked_surplus_id: str | None = None,
    now: datetime | None = None,
) -> Chat:
    """
    Conversation for the unordered pair (me, other), created on first use.

    Without an explicit link, a pair that includes a driver is linked to the active
    delivery joining them. A chat whose link is missing or finished takes a new one.
    """
    if me.id == other.id:
        raise ValidationError("Cannot start a chat with yourself.", code="SELF_CHAT")
    now = now or utcnow()

    if linked_surplus_id is not None:
        rec = surplus_store.read(db, linked_surplus_id)
        if not (_involves(rec, me) and _involves(rec, other)):
            raise ValidationError("That delivery does not involve both participants.", code="UNRELATED_DELIVERY")
        if rec.status in TERMINAL_STATUSES:
            raise GuardViolation("That delivery is already finished.", code="DELIVERY_FINISHED")
    elif PartyRole.DRIVER in (me.role, other.role) and me.role is not other.role:
        link = active_link_for(db, me.id, me.role, other.id, other.role)
        linked_surplus_id = link.id if link else None

    key = pair_key(me.id, other.id)
    chat = db.query(Chat).filter(Chat.pair_key == key).one_or_none()
    if chat is None:
        a, b = sorted((me, other), key=lambda p: p.id)
        chat = Chat(
            pair_key=key,
            participant_a_id=a.id,
            participant_a_name=a.name,
            participant_a_role=a.role.value,
            participant_b_id=b.id,
            participant_b_name=b.name,
            participant_b_role=b.role.value,
            delivery_surplus_id=linked_surplus_id,
            created_at=now,
            updated_at=now,
        )
        db.add(chat)
        try:
            db.commit()
        except IntegrityError:
            # Both sides opened the chat at once; the other insert won.
            db.rollback()
            chat = db.query(Chat).filter(Chat.pair_key == key).one()
        else:
            logger.info("chat %s created between %s and %s (link=%s)", chat.id, a.id, b.id, linked_surplus_id)
            return chat

    if (
        linked_surplus_id
        and chat.delivery_surplus_id != linked_surplus_id
        and not _link_is_open(db, chat.delivery_surplus_id)
    ):
        chat.delivery_surplus_id = linked_surplus_id
        chat.updated_at = now
        db.commit()
        logger.info("chat %s relinked to surplus %s", chat.id, linked_surplus_id)
    return chat


def is_archived(db: Session, chat: Chat) -> bool:
    """The delivery this chat was opened for has finished (collected or expired)."""
    if not chat.delivery_surplus_id:
        return False
    rec = db.get(SurplusRecord, chat.delivery_surplus_id, populate_existing=True)
    return rec is not None and rec.status in TERMINAL_STATUSES


def is_archived_for(db: Session, chat: Chat, user_id: str) -> bool:
    # Only drivers lose the conversation from their list; canteens and NGOs keep it.
    return chat.role_of(user_id) is PartyRole.DRIVER and is_archived(db, chat)


def get_conversation(db: Session, *, chat_id: str, user_id: str) -> Chat:
    chat = db.get(Chat, chat_id, populate_existing=True)
    if chat is None:
        raise NotFoundError("Chat not found", code="CHAT_NOT_FOUND")
    if not chat.has_participant(user_id):
        raise AuthorizationError("Not a participant of this chat.", code="NOT_PARTICIPANT")
    return chat


def list_conversations(db: Session, *, user_id: str, role: PartyRole) -> list[Chat]:
    chats = (
        db.query(Chat)
        .filter(or_(Chat.participant_a_id == user_id, Chat.participant_b_id == user_id))
        .order_by(func.coalesce(Chat.last_message_at, Chat.updated_at).desc(), Chat.id.asc())
        .all()
    )
    if role is not PartyRole.DRIVER:
        return chats

    linked_ids = {c.delivery_surplus_id for c in chats if c.delivery_surplus_id}
    finished: set[str] = set()
    if linked_ids:
        finished = {
            r.id
            for r in db.query(SurplusRecord.id)
            .filter(SurplusRecord.id.in_(linked_ids), SurplusRecord.status.in_(list(TERMINAL_STATUSES)))
            .all()
        }
    return [c for c in chats if c.delivery_surplus_id not in finished]


def order_messages(messages: Iterable[ChatMessage]) -> list[ChatMessage]:
    """Display order: send time, then insertion order. Input order is not trusted."""
    return sorted(messages, key=lambda m: (m.sent_at, m.id))


def list_messages(db: Session, *, chat_id: str, user_id: str) -> list[ChatMessage]:
    # History stays readable after archival.
    get_conversation(db, chat_id=chat_id, user_id=user_id)
    return order_messages(db.query(ChatMessage).filter(ChatMessage.chat_id == chat_id).all())


def can_send(db: Session, chat: Chat, user_id: str) -> bool:
    if is_archived_for(db, chat, user_id):
        return False
    other_id, _name, other_role = chat.other_of(user_id)
    return contact_allowed(db, user_id, chat.role_of(user_id), other_id, other_role)


def send_message(
    db: Session,
    *,
    chat_id: str,
    sender_id: str,
    sender_role: "str | PartyRole",
    text: str,
    now: datetime | None = None,
) -> ChatMessage:
    body = (text or "").strip()
    if not body:
        raise ValidationError("Message text is empty.", code="EMPTY_MESSAGE")

    role = normalize_role(sender_role)
    chat = get_conversation(db, chat_id=chat_id, user_id=sender_id)
    if chat.role_of(sender_id) is not role:
        raise AuthorizationError("Sender role does not match this chat.", code="ROLE_MISMATCH")
    if is_archived_for(db, chat, sender_id):
        raise ChatArchivedError()

    other_id, _name, other_role = chat.other_of(sender_id)
    if not contact_allowed(db, sender_id, role, other_id, other_role):
        raise AuthorizationError("Chat restricted to active deliveries.", code="CONTACT_RESTRICTED")

    now = now or utcnow()
    raw_role = sender_role.value if isinstance(sender_role, PartyRole) else sender_role.strip().lower()
    msg = ChatMessage(chat_id=chat.id, sender_id=sender_id, sender_role=raw_role, text=body, sent_at=now)
    db.add(msg)
    chat.last_message = body
    chat.last_message_at = now
    chat.updated_at = now
    db.commit()
    db.refresh(msg)
    return msg
