"""
Embedding client: turns query text into a vector via a configured embedding model.
"""
import time
from typing import Any, List

from ragrelay.core.config import ModelConfig
from ragrelay.core.errors import EmptyResponseError
from ragrelay.core.logging import get_logger
from ragrelay.core.metrics import record_provider_request
from ragrelay.services.ai.registry import (
    embedding_request_path,
    validate_model_config,
)
from ragrelay.services.ai.transport import ProviderTransport

logger = get_logger(__name__)


class EmbeddingClient:
    def __init__(self, transport: ProviderTransport):
        self._transport = transport

    async def embed(self, config: ModelConfig, text: str) -> Any:
        """
        Request an embedding for ``text``.

        Returns:
            Raw provider response ({"data": [{"embedding": [...]}], ...} for GPT)

        Raises:
            ConfigValidationError: missing mandatory field or api_version
            UnsupportedModelError: model is not a supported embedding model
            EmptyResponseError: transport returned no body
        """
        family = validate_model_config(config, kind="embedding")
        path = embedding_request_path(family, config)
        headers = {
            "Content-Type": "application/json",
            "AI-Resource-Group": config.resource_group,
        }

        start = time.time()
        try:
            response = await self._transport.send(
                config.destination,
                "POST",
                path,
                body={"input": text},
                headers=headers,
            )
        finally:
            record_provider_request(
                "embedding", family.value, config.model_name, time.time() - start
            )

        if not response:
            raise EmptyResponseError(destination=config.destination)

        logger.debug(
            "embedding_received",
            model=config.model_name,
            text_length=len(text),
        )
        return response


def extract_embedding(response: Any) -> List[float]:
    """
    Pull the query vector out of an embedding response.

    Raises:
        EmptyResponseError if the envelope carries no embedding.
    """
    try:
        vector = response["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as exc:
        raise EmptyResponseError("Embedding response carries no vector.") from exc
    if not vector:
        raise EmptyResponseError("Embedding response carries an empty vector.")
    return [float(v) for v in vector]
