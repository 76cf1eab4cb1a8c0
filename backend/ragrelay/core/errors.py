"""
Error taxonomy for the RAG pipeline.

Every stage raises one of these; none of them is swallowed along the way.
Each error carries enough structured context (offending field, model name,
truncated raw excerpt) to diagnose a failure without logging conversation
content.

Retry policy:
- EmptyResponseError and transient ProviderHTTPError: one retry, then surfaced
- everything else: never retried
"""
from typing import Any, Dict, Optional

from ragrelay.core.logging import truncate

RAW_EXCERPT_LIMIT = 500


class RagRelayError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    error_code: str = "rag_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message, **self.context}


class ConfigValidationError(RagRelayError):
    """Missing or invalid model / store configuration."""

    error_code = "config_validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field=field)
        self.field = field


class UnsupportedModelError(RagRelayError):
    """Model name is not part of any supported provider family."""

    error_code = "unsupported_model"

    def __init__(self, model_name: Optional[str], kind: str = "chat"):
        super().__init__(
            f"Model {model_name} is not supported as a {kind} model. "
            "Refer to the documentation for the supported models.",
            model_name=model_name,
            kind=kind,
        )
        self.model_name = model_name
        self.kind = kind


class InvalidSimilarityAlgorithmError(RagRelayError):
    """Similarity algorithm other than COSINE_SIMILARITY or L2DISTANCE."""

    status_code = 400
    error_code = "invalid_similarity_algorithm"

    def __init__(self, algorithm: Any):
        super().__init__(
            f"Invalid algorithm name: {algorithm}. "
            "Currently only COSINE_SIMILARITY and L2DISTANCE are accepted.",
            algorithm=str(algorithm),
        )
        self.algorithm = algorithm


class EmptyResponseError(RagRelayError):
    """Transport returned no usable body."""

    status_code = 502
    error_code = "empty_response"

    def __init__(self, message: str = "Empty response received.", destination: Optional[str] = None):
        super().__init__(message, destination=destination)
        self.destination = destination


class ProviderHTTPError(RagRelayError):
    """Provider answered with a non-2xx status."""

    status_code = 502
    error_code = "provider_http_error"

    def __init__(self, destination: str, upstream_status: int, body: Any = None):
        super().__init__(
            f"Destination {destination} returned HTTP {upstream_status}",
            destination=destination,
            upstream_status=upstream_status,
            raw_excerpt=truncate(body, RAW_EXCERPT_LIMIT) if body else None,
        )
        self.destination = destination
        self.upstream_status = upstream_status

    @property
    def is_transient(self) -> bool:
        return self.upstream_status == 429 or self.upstream_status >= 500


class ClassificationParseError(RagRelayError):
    """Classifier output is not valid JSON or names an unknown category."""

    status_code = 502
    error_code = "classification_parse_error"

    def __init__(self, message: str, raw_text: Any = None):
        super().__init__(
            message,
            raw_excerpt=truncate(raw_text, RAW_EXCERPT_LIMIT) if raw_text is not None else None,
        )
        self.raw_text = raw_text


class NoAssistantTextError(RagRelayError):
    """No recognized envelope shape carried assistant text."""

    status_code = 502
    error_code = "no_assistant_text"

    def __init__(self, envelope: Any, stage: str = "completion"):
        super().__init__(
            f"LLM returned no text content for the {stage} response.",
            stage=stage,
            raw_excerpt=truncate(envelope, RAW_EXCERPT_LIMIT),
        )
        self.stage = stage


class RequestCancelledError(RagRelayError):
    """Caller went away before the completion call was issued."""

    status_code = 499
    error_code = "request_cancelled"

    def __init__(self, message: str = "Request was cancelled before completion."):
        super().__init__(message)
