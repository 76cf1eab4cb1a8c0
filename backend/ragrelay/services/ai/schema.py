"""
Pydantic models shared by the RAG pipeline stages.

- ConversationTurn: canonical {role, content} message, the only shape the
  pipeline sends to providers or hands to the memory store
- ClassificationResult: classifier output contract
- SimilarityMatch: one ranked retrieval hit
- RagResult: retrieval + raw completion, before normalization
"""
import re
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ragrelay.core.errors import ClassificationParseError

ALLOWED_ROLES = frozenset({"system", "user", "assistant", "function", "tool", "developer"})
ROLE_ALIASES = {"model": "assistant", "ai": "assistant"}

LEAVE_REQUEST = "leave-request-query"
GENERIC_QUERY = "generic-query"
CATEGORIES = (LEAVE_REQUEST, GENERIC_QUERY)

DATE_RANGE_PATTERN = re.compile(r"^\d{4}/\d{2}/\d{2}-\d{4}/\d{2}/\d{2}$")


class ConversationTurn(BaseModel):
    """One validated conversational message."""

    role: Literal["system", "user", "assistant", "function", "tool", "developer"]
    content: str

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            return ROLE_ALIASES.get(value, value)
        return value

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("content must not be empty")
        return trimmed


class ClassificationResult(BaseModel):
    """
    Structured output of the query classifier.

    {
      "category": "leave-request-query | generic-query",
      "dates": "yyyy/mm/dd-yyyy/mm/dd"   # leave requests only
    }
    """

    category: Literal["leave-request-query", "generic-query"]
    dates: Optional[str] = Field(None, description="yyyy/mm/dd-yyyy/mm/dd")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def dates_only_for_leave_requests(self) -> "ClassificationResult":
        if self.category == GENERIC_QUERY:
            self.dates = None
            return self
        if not self.dates or not DATE_RANGE_PATTERN.match(self.dates.strip()):
            raise ValueError("leave-request-query requires dates as yyyy/mm/dd-yyyy/mm/dd")
        self.dates = self.dates.strip()
        return self


class SimilarityMatch(BaseModel):
    content: str
    score: float


class RagResult(BaseModel):
    """Raw completion envelope plus the retrieval hits that fed the prompt."""

    completion: Any
    additional_contents: List[SimilarityMatch] = Field(default_factory=list)


def validate_classification_payload(payload: Any) -> ClassificationResult:
    """
    Validate parsed classifier JSON.

    Raises:
        ClassificationParseError if the payload is not an object, names an
        unknown category, or carries a malformed date range.
    """
    if not isinstance(payload, dict):
        raise ClassificationParseError(
            "Classifier output is not a JSON object", raw_text=payload
        )
    try:
        return ClassificationResult.model_validate(payload)
    except ValidationError as exc:
        raise ClassificationParseError(
            f"{payload.get('category')} is not a supported classification: "
            f"{exc.errors()[0].get('msg')}",
            raw_text=payload,
        ) from exc
