"""
Memory sanitizer: turns stored turn-like records into canonical turns.

Stored history comes from heterogeneous historical writes, so anything may
show up. Malformed records are dropped, never reported as errors.
"""
from collections.abc import Mapping
from typing import Any, List

from ragrelay.core.logging import get_logger
from ragrelay.services.ai.schema import ALLOWED_ROLES, ROLE_ALIASES, ConversationTurn

logger = get_logger(__name__)


def sanitize_context(records: Any) -> List[ConversationTurn]:
    """
    Keep only valid turns, order preserved.

    - non-mapping entries are dropped
    - "model" / "ai" roles become "assistant"
    - roles outside the allowed set are dropped
    - non-string or blank content is dropped
    - retained content is trimmed

    A non-list input yields an empty list.
    """
    if not isinstance(records, (list, tuple)):
        return []

    cleaned: List[ConversationTurn] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue

        role = record.get("role")
        content = record.get("content")
        if not isinstance(role, str):
            continue
        role = ROLE_ALIASES.get(role, role)
        if role not in ALLOWED_ROLES:
            continue
        if not isinstance(content, str) or not content.strip():
            continue

        cleaned.append(ConversationTurn(role=role, content=content.strip()))

    dropped = len(records) - len(cleaned)
    if dropped:
        logger.info("memory_records_dropped", kept=len(cleaned), dropped=dropped)
    return cleaned
