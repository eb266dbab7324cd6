from pydantic import BaseModel, Field


class ChatOpenIn(BaseModel):
    other_user_id: str = Field(min_length=1, max_length=64)
    delivery_surplus_id: str | None = Field(default=None, max_length=64)


class ChatOut(BaseModel):
    id: str
    other_user_id: str
    other_user_name: str
    other_user_role: str
    delivery_surplus_id: str | None = None
    last_message: str | None = None
    last_message_at: str | None = None
    archived: bool
    can_send: bool


class ChatListOut(BaseModel):
    chats: list[ChatOut]


class MessageIn(BaseModel):
    text: str = Field(max_length=4000)


class MessageOut(BaseModel):
    id: int
    chat_id: str
    sender_id: str
    sender_role: str
    text: str
    sent_at: str


class MessageListOut(BaseModel):
    messages: list[MessageOut]
