"""
Request and response models for the chat endpoints.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ragrelay.services.ai.schema import SimilarityMatch


class RagRequest(BaseModel):
    """One user message to answer with retrieval-augmented generation."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., alias="conversationId", min_length=1)
    message_id: str = Field(..., alias="messageId", min_length=1)
    message_time: datetime = Field(..., alias="messageTime")
    user_id: Optional[str] = Field(None, alias="userId")
    user_query: str = Field(..., alias="userQuery")

    @field_validator("user_query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_query must not be blank")
        return value.strip()


class RagResponse(BaseModel):
    """Assistant answer plus the retrieved contents it was grounded on."""

    model_config = ConfigDict(populate_by_name=True)

    role: Literal["assistant"] = "assistant"
    content: str
    message_time: str = Field(..., alias="messageTime")
    additional_contents: List[SimilarityMatch] = Field(
        default_factory=list, alias="additionalContents"
    )
