from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uuid

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., examples=["Apa itu trimester pertama?"])
    user_id: str = Field(
        ...,
        alias="userId",
        description="Identifier of the authenticated user sending the message.",
        examples=["5d3bfc49-6472-4c9a-966f-21afe51a8697"],
    )
    session_id: str = Field(
        ...,
        alias="sessionId",
        description="Client-generated identifier grouping the turns of one conversation.",
        examples=["0b7a4bd2-2f0e-4f55-9a35-2d0b5a0b2c11"],
    )

    @field_validator('message', 'user_id', 'session_id')
    @classmethod
    def not_blank(cls, v: str):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v

class ContextTurn(BaseModel):
    """One turn of the conversation context sent to the language model."""
    role: Literal["user", "model"]
    text: str

class ConversationMessage(BaseModel):
    """A message as the chat client renders it. 'loading' is a transient placeholder."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "model", "loading"]
    content: str = ""

class HistoryMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    role: Literal["user", "model"]
    content: str
    created_at: datetime = Field(..., alias="createdAt")
