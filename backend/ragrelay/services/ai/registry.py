"""
Supported provider families and models.

Each chat model belongs to exactly one ProviderFamily. The family decides, in
one place, the request path template, whether an API version is required,
the payload schema and the envelope we expect back:

- GPT (family A): message list with an embedded system entry,
  POST {endpoint}/chat/completions?api-version={version}
- GEMINI (family B): contents/parts list, params under generationConfig,
  POST {endpoint}/models/{model}-{version}:generateContent
- CLAUDE (family C): message list plus a top-level system field,
  POST {endpoint}/invoke

Adding a provider means adding a family member, its model set and its
path template here, plus one payload builder.

The tables are immutable and lookups are memoized, so concurrent requests
can resolve families without locking.
"""
from enum import Enum
from functools import lru_cache
from typing import Dict, FrozenSet, Optional

from ragrelay.core.config import ModelConfig
from ragrelay.core.errors import ConfigValidationError, UnsupportedModelError


class ProviderFamily(str, Enum):
    GPT = "gpt"
    GEMINI = "gemini"
    CLAUDE = "claude"


CHAT_MODELS: Dict[ProviderFamily, FrozenSet[str]] = {
    ProviderFamily.GPT: frozenset(
        {"gpt-4", "gpt-4o", "gpt-4-32k", "gpt-35-turbo-16k", "gpt-35-turbo"}
    ),
    ProviderFamily.GEMINI: frozenset({"gemini-1.0-pro"}),
    ProviderFamily.CLAUDE: frozenset(
        {
            "anthropic--claude-3-sonnet",
            "anthropic--claude-3-haiku",
            "anthropic--claude-3-opus",
            "anthropic--claude-3.5-sonnet",
        }
    ),
}

EMBEDDING_MODELS: Dict[ProviderFamily, FrozenSet[str]] = {
    ProviderFamily.GPT: frozenset(
        {"text-embedding-ada-002", "text-embedding-3-small", "text-embedding-3-large"}
    ),
}

CHAT_REQUIRES_API_VERSION: Dict[ProviderFamily, bool] = {
    ProviderFamily.GPT: True,
    ProviderFamily.GEMINI: True,
    ProviderFamily.CLAUDE: False,
}

EMBEDDING_REQUIRES_API_VERSION: Dict[ProviderFamily, bool] = {
    ProviderFamily.GPT: True,
}


def _lookup(table: Dict[ProviderFamily, FrozenSet[str]], model_name: Optional[str]) -> Optional[ProviderFamily]:
    for family, models in table.items():
        if model_name in models:
            return family
    return None


@lru_cache(maxsize=128)
def _chat_family(model_name: str) -> Optional[ProviderFamily]:
    return _lookup(CHAT_MODELS, model_name)


@lru_cache(maxsize=128)
def _embedding_family(model_name: str) -> Optional[ProviderFamily]:
    return _lookup(EMBEDDING_MODELS, model_name)


def resolve_chat_family(model_name: Optional[str]) -> ProviderFamily:
    """
    Resolve the provider family of a chat model.

    Raises:
        UnsupportedModelError if the model belongs to no family.
    """
    family = _chat_family(model_name) if model_name else None
    if family is None:
        raise UnsupportedModelError(model_name, kind="chat")
    return family


def resolve_embedding_family(model_name: Optional[str]) -> ProviderFamily:
    family = _embedding_family(model_name) if model_name else None
    if family is None:
        raise UnsupportedModelError(model_name, kind="embedding")
    return family


def validate_model_config(config: ModelConfig, kind: str) -> ProviderFamily:
    """
    Validate a model configuration and resolve its family.

    Checks, in order: mandatory fields present, model supported, API version
    present when the family requires one.

    Args:
        config: Model configuration to validate
        kind: "chat" or "embedding"

    Raises:
        ConfigValidationError: a mandatory field (or api_version) is missing
        UnsupportedModelError: model is not in the supported set for ``kind``
    """
    missing = config.missing_fields()
    if missing:
        raise ConfigValidationError(
            f'The config is missing the parameter: "{missing[0]}".', field=missing[0]
        )

    if kind == "embedding":
        family = resolve_embedding_family(config.model_name)
        requires_version = EMBEDDING_REQUIRES_API_VERSION[family]
    else:
        family = resolve_chat_family(config.model_name)
        requires_version = CHAT_REQUIRES_API_VERSION[family]

    if requires_version and not config.api_version:
        raise ConfigValidationError(
            'The config is missing parameter: "api_version".', field="api_version"
        )
    return family


def chat_request_path(family: ProviderFamily, config: ModelConfig) -> str:
    """Path + query for a chat request (relative to the destination base URL)."""
    endpoint = config.deployment_endpoint.rstrip("/")
    if family is ProviderFamily.GPT:
        return f"{endpoint}/chat/completions?api-version={config.api_version}"
    if family is ProviderFamily.GEMINI:
        return f"{endpoint}/models/{config.model_name}-{config.api_version}:generateContent"
    return f"{endpoint}/invoke"


def embedding_request_path(family: ProviderFamily, config: ModelConfig) -> str:
    endpoint = config.deployment_endpoint.rstrip("/")
    return f"{endpoint}/embeddings?api-version={config.api_version}"
