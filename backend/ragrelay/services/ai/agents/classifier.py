"""
Query classification agent.

Responsibilities:
- Label a raw query as leave-request-query or generic-query
- Extract the requested date range for leave requests
- Parse the model's text as JSON (direct, then fenced code block)
- Never perform retrieval

Exactly one completion call per classification; failures are raised, never
swallowed, so a misbehaving classifier is visible to callers.
"""
import json
import re
from datetime import date, datetime, timezone
from typing import Any, Callable

from ragrelay.core.config import ModelConfig
from ragrelay.core.errors import ClassificationParseError
from ragrelay.core.logging import get_logger
from ragrelay.core.metrics import record_classification
from ragrelay.services.ai.completion_client import CompletionClient
from ragrelay.services.ai.payload_builder import build_chat_payload
from ragrelay.services.ai.prompts import build_classification_prompt
from ragrelay.services.ai.response_normalizer import require_assistant_text
from ragrelay.services.ai.schema import ClassificationResult, validate_classification_payload

logger = get_logger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def parse_json_text(text: Any) -> Any:
    """
    Parse model output as JSON.

    Tries the whole (trimmed) text first, then the first fenced code block
    (```json ... ``` or ``` ... ```).

    Raises:
        ClassificationParseError if neither strategy yields valid JSON.
    """
    if not isinstance(text, str):
        raise ClassificationParseError("LLM response has no text content to parse.", raw_text=text)

    trimmed = text.strip()
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as direct_error:
        match = FENCED_BLOCK.search(trimmed)
        if match and match.group(1):
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError as fenced_error:
                raise ClassificationParseError(
                    "Failed to parse JSON from fenced block in LLM text.", raw_text=trimmed
                ) from fenced_error
        raise ClassificationParseError(
            "Failed to parse JSON from LLM text.", raw_text=trimmed
        ) from direct_error


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QueryClassificationAgent:
    """Single-call LLM classifier."""

    def __init__(
        self,
        completion_client: CompletionClient,
        chat_config: ModelConfig,
        today: Callable[[], date] = _utc_today,
    ):
        self._completion_client = completion_client
        self._chat_config = chat_config
        self._today = today

    async def classify(self, query: str) -> ClassificationResult:
        """
        Classify a user query.

        Raises:
            ClassificationParseError: unparseable output or unknown category
            NoAssistantTextError: provider envelope carried no text
            ConfigValidationError / UnsupportedModelError / EmptyResponseError
        """
        instruction = build_classification_prompt(self._today())
        payload = build_chat_payload(self._chat_config.model_name, query, instruction)

        response = await self._completion_client.complete(
            self._chat_config, payload, agent="classifier"
        )
        text = require_assistant_text(response, stage="classification")

        try:
            result = validate_classification_payload(parse_json_text(text))
        except ClassificationParseError as exc:
            record_classification("invalid")
            logger.warning(
                "classification_parse_failed",
                error=exc.message,
                raw_excerpt=exc.context.get("raw_excerpt"),
            )
            raise

        record_classification(result.category)
        logger.info(
            "query_classified",
            category=result.category,
            dates=result.dates,
            query_length=len(query),
        )
        return result
