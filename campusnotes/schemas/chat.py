"""Chat Pydantic schemas — payloads of client-to-server socket events."""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from campusnotes.database import MAX_ID


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class SendMessageIn(_Event):
    room: str = Field(validation_alias=AliasChoices("room", "semesterId"))
    message: str
    message_type: str = Field("text", validation_alias=AliasChoices("messageType", "message_type"))
    reply_to: Optional[int] = Field(None, ge=1, le=MAX_ID, validation_alias=AliasChoices("replyTo", "reply_to"))
    file_url: Optional[str] = Field(None, validation_alias=AliasChoices("fileUrl", "file_url"))
    file_name: Optional[str] = Field(None, validation_alias=AliasChoices("fileName", "file_name"))


class EditMessageIn(_Event):
    message_id: int = Field(ge=1, le=MAX_ID, validation_alias=AliasChoices("messageId", "message_id"))
    new_message: str = Field(validation_alias=AliasChoices("newMessage", "new_message"))


class DeleteMessageIn(_Event):
    message_id: int = Field(ge=1, le=MAX_ID, validation_alias=AliasChoices("messageId", "message_id"))


class ReactionIn(_Event):
    message_id: int = Field(ge=1, le=MAX_ID, validation_alias=AliasChoices("messageId", "message_id"))
    emoji: str


class TypingIn(_Event):
    room: str = Field(validation_alias=AliasChoices("room", "semesterId"))
