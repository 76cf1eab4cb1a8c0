"""
Response normalizer: extracts the assistant's plain text from any supported
provider envelope.

Shapes are tried in a fixed order, and the order is part of the contract
since envelopes can overlap structurally:

(a) message style:       {"choices": [{"message": {"content": "..."}}]}
(b) content-block style: {"content": [{"type": "text", "text": "..."}, ...]}
(c) output-array style:  {"output": [{"content": [{"text": "..."}]}, ...]}
(d) candidate style:     {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

Only presence is checked; any non-empty string found is returned verbatim.
"""
from typing import Any, List, Optional

from ragrelay.core.errors import NoAssistantTextError
from ragrelay.core.logging import get_logger

logger = get_logger(__name__)


def _get(value: Any, *path: Any) -> Any:
    """Walk dict keys / list indexes, returning None on any miss."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(value, list) or len(value) <= step:
                return None
        elif not isinstance(value, dict):
            return None
        value = value[step] if isinstance(step, int) else value.get(step)
    return value


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _from_choices(envelope: Any) -> Optional[str]:
    return _text(_get(envelope, "choices", 0, "message", "content"))


def _from_content_blocks(envelope: Any) -> Optional[str]:
    blocks = _get(envelope, "content")
    if not isinstance(blocks, list) or not _text(_get(blocks, 0, "text")):
        return None
    texts: List[str] = [str(_get(block, "text") or "") for block in blocks]
    return "\n".join(texts)


def _from_output_array(envelope: Any) -> Optional[str]:
    entries = _get(envelope, "output")
    if not isinstance(entries, list) or not _text(_get(entries, 0, "content", 0, "text")):
        return None
    texts: List[str] = [str(_get(entry, "content", 0, "text") or "") for entry in entries]
    return "\n".join(texts)


def _from_candidates(envelope: Any) -> Optional[str]:
    parts = _get(envelope, "candidates", 0, "content", "parts")
    if not isinstance(parts, list):
        return None
    texts = [part["text"] for part in parts if isinstance(part, dict) and _text(part.get("text"))]
    return "\n".join(texts) if texts else None


EXTRACTORS = (
    _from_choices,
    _from_content_blocks,
    _from_output_array,
    _from_candidates,
)


def extract_assistant_text(envelope: Any, provider_hint: Optional[str] = None) -> Optional[str]:
    """
    Return the assistant text of a provider envelope, or None when no known shape matches.

    Args:
        envelope: Decoded provider response
        provider_hint: Optional family hint ("gpt", "gemini", "claude"). It is
            only reported in diagnostics; it never reorders the trials.
    """
    for extractor in EXTRACTORS:
        text = extractor(envelope)
        if text is not None:
            return text

    logger.debug(
        "assistant_text_no_shape_matched",
        provider_hint=provider_hint,
        top_level_keys=[str(key) for key in envelope][:10] if isinstance(envelope, dict) else None,
    )
    return None


def require_assistant_text(envelope: Any, provider_hint: Optional[str] = None, stage: str = "completion") -> str:
    """
    Like extract_assistant_text, but raise when nothing is found.

    Raises:
        NoAssistantTextError carrying a truncated raw excerpt.
    """
    text = extract_assistant_text(envelope, provider_hint)
    if text is None:
        error = NoAssistantTextError(envelope, stage=stage)
        logger.error(
            "assistant_text_missing",
            stage=stage,
            provider_hint=provider_hint,
            raw_excerpt=error.context.get("raw_excerpt"),
        )
        raise error
    return text
