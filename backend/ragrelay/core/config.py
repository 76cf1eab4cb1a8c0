"""
Service configuration.

Configuration is read once from the environment (and an optional .env file in
the repository root) into explicit pydantic objects, which are then handed to
each component at construction time. Components never read os.environ
themselves, so tests can build them from fixture configs.

Environment variables:
- {EMBEDDING,CHAT}_MODEL_DESTINATION_NAME: named provider gateway
- {EMBEDDING,CHAT}_MODEL_DEPLOYMENT_URL: deployment path on that gateway
- {EMBEDDING,CHAT}_MODEL_RESOURCE_GROUP: sent as the AI-Resource-Group header
- {EMBEDDING,CHAT}_MODEL_NAME: deployed model name
- {EMBEDDING,CHAT}_MODEL_API_VERSION: API version (required for versioned families)
- DESTINATION_<NAME>_URL / DESTINATION_<NAME>_TOKEN: gateway base URL and bearer token
- RAG_TABLE_NAME, RAG_EMBEDDING_COLUMN, RAG_CONTENT_COLUMN: vector table layout
- RAG_TOP_K (default 30), RAG_ALGORITHM (default COSINE_SIMILARITY)
- LLM_TIMEOUT_SECONDS (default 30), LLM_MAX_RETRIES (default 1)
"""
import os
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ragrelay.core.logging import get_logger

logger = get_logger(__name__)

env_path = Path(__file__).parent.parent.parent.parent / ".env"

MANDATORY_MODEL_FIELDS = (
    "destination",
    "resource_group",
    "deployment_endpoint",
    "model_name",
)


class ModelConfig(BaseModel):
    """
    Identifies one deployed model (chat or embedding).

    Fields are optional at the type level on purpose: the embedding and
    completion clients validate them and raise ConfigValidationError naming
    the first missing field.
    """

    destination: Optional[str] = None
    deployment_endpoint: Optional[str] = None
    resource_group: Optional[str] = None
    model_name: Optional[str] = None
    api_version: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in MANDATORY_MODEL_FIELDS if not getattr(self, name)]


class DestinationConfig(BaseModel):
    """A named provider gateway the transport can send requests to."""

    name: str
    base_url: str
    token: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)


class RetrievalConfig(BaseModel):
    table_name: str = "SAP_DEMO_LLM_DOCUMENTCHUNK"
    embedding_column: str = "EMBEDDING"
    content_column: str = "TEXT_CHUNK"
    top_k: int = Field(30, ge=1)
    algorithm: str = "COSINE_SIMILARITY"


class Settings(BaseModel):
    embedding_model: ModelConfig = Field(default_factory=ModelConfig)
    chat_model: ModelConfig = Field(default_factory=ModelConfig)
    destinations: Dict[str, DestinationConfig] = Field(default_factory=dict)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    timeout_seconds: float = 30.0
    max_retries: int = Field(1, ge=0, le=1)
    database_url: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True


_DESTINATION_PATTERN = re.compile(r"^DESTINATION_(?P<name>[A-Z0-9_]+)_URL$")


def _model_config_from_env(prefix: str, env: Mapping[str, str]) -> ModelConfig:
    return ModelConfig(
        destination=env.get(f"{prefix}_DESTINATION_NAME"),
        deployment_endpoint=env.get(f"{prefix}_DEPLOYMENT_URL"),
        resource_group=env.get(f"{prefix}_RESOURCE_GROUP"),
        model_name=env.get(f"{prefix}_NAME"),
        api_version=env.get(f"{prefix}_API_VERSION"),
    )


def _destinations_from_env(env: Mapping[str, str]) -> Dict[str, DestinationConfig]:
    """
    Collect DESTINATION_<NAME>_URL entries.

    Destination names are matched case-insensitively with dashes folded to
    underscores, so a model configured with destination "genai-hub" resolves
    DESTINATION_GENAI_HUB_URL.
    """
    destinations: Dict[str, DestinationConfig] = {}
    for key, value in env.items():
        match = _DESTINATION_PATTERN.match(key)
        if not match or not value:
            continue
        env_name = match.group("name")
        destinations[env_name] = DestinationConfig(
            name=env_name,
            base_url=value,
            token=env.get(f"DESTINATION_{env_name}_TOKEN"),
        )
    return destinations


def destination_key(name: str) -> str:
    """Normalize a destination name to its environment-variable form."""
    return re.sub(r"[^A-Z0-9]", "_", name.upper())


def get_database_url(env: Mapping[str, str]) -> str:
    """Get database URL from DATABASE_URL or individual DB_* components."""
    database_url = env.get("DATABASE_URL")
    if database_url:
        return database_url

    host = env.get("DB_HOST", "postgres")
    port = int(env.get("DB_PORT", "5432"))
    user = env.get("DB_USER", "postgres")
    password = env.get("DB_PASSWORD", "postgres")
    database = env.get("DB_NAME", "postgres")

    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Mapping to read from; defaults to os.environ after loading .env
    """
    if env is None:
        if env_path.exists():
            load_dotenv(env_path)
            logger.info("env_loaded", env_path=str(env_path))
        env = os.environ

    retrieval = RetrievalConfig(
        table_name=env.get("RAG_TABLE_NAME", "SAP_DEMO_LLM_DOCUMENTCHUNK"),
        embedding_column=env.get("RAG_EMBEDDING_COLUMN", "EMBEDDING"),
        content_column=env.get("RAG_CONTENT_COLUMN", "TEXT_CHUNK"),
        top_k=int(env.get("RAG_TOP_K", "30") or "30"),
        algorithm=env.get("RAG_ALGORITHM", "COSINE_SIMILARITY"),
    )

    settings = Settings(
        embedding_model=_model_config_from_env("EMBEDDING_MODEL", env),
        chat_model=_model_config_from_env("CHAT_MODEL", env),
        destinations=_destinations_from_env(env),
        retrieval=retrieval,
        timeout_seconds=float(env.get("LLM_TIMEOUT_SECONDS", "30") or "30"),
        max_retries=int(env.get("LLM_MAX_RETRIES", "1") or "1"),
        database_url=get_database_url(env),
        log_level=env.get("LOG_LEVEL", "INFO"),
        log_json=env.get("LOG_JSON", "true").lower() == "true",
    )

    logger.info(
        "settings_loaded",
        chat_model=settings.chat_model.model_name,
        embedding_model=settings.embedding_model.model_name,
        destinations=sorted(settings.destinations),
        top_k=settings.retrieval.top_k,
    )
    return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor (loaded on first use)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
