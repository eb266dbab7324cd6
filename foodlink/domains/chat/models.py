import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from foodlink.core.db import Base, UTCDateTime, utcnow
from foodlink.core.roles import PartyRole, normalize_role


def pair_key(a_id: str, b_id: str) -> str:
    low, high = sorted((a_id, b_id))
    return f"{low}:{high}"


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # One conversation per unordered pair; participant_a_id < participant_b_id.
    pair_key: Mapped[str] = mapped_column(String, unique=True, index=True)

    participant_a_id: Mapped[str] = mapped_column(String, index=True)
    participant_a_name: Mapped[str] = mapped_column(String)
    participant_a_role: Mapped[str] = mapped_column(String)
    participant_b_id: Mapped[str] = mapped_column(String, index=True)
    participant_b_name: Mapped[str] = mapped_column(String)
    participant_b_role: Mapped[str] = mapped_column(String)

    # Delivery this conversation was opened for, if any.
    delivery_surplus_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a_id, self.participant_b_id)

    def role_of(self, user_id: str) -> PartyRole:
        if user_id == self.participant_a_id:
            return normalize_role(self.participant_a_role)
        return normalize_role(self.participant_b_role)

    def other_of(self, user_id: str) -> tuple[str, str, PartyRole]:
        """(id, name, role) of the participant who is not `user_id`."""
        if user_id == self.participant_a_id:
            return self.participant_b_id, self.participant_b_name, normalize_role(self.participant_b_role)
        return self.participant_a_id, self.participant_a_name, normalize_role(self.participant_a_role)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    # Autoincrement id doubles as insertion order for timestamp ties.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(String, ForeignKey("chats.id"), index=True)
    sender_id: Mapped[str] = mapped_column(String)
    sender_role: Mapped[str] = mapped_column(String)
    text: Mapped[str] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
