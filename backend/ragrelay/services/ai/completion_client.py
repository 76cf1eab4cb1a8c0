"""
Completion client: dispatches a built chat payload to the resolved provider endpoint.
"""
import time
from typing import Any, Dict

from ragrelay.core.config import ModelConfig
from ragrelay.core.errors import EmptyResponseError
from ragrelay.core.logging import get_logger
from ragrelay.core.metrics import record_provider_request
from ragrelay.services.ai.registry import chat_request_path, validate_model_config
from ragrelay.services.ai.transport import ProviderTransport

logger = get_logger(__name__)


class CompletionClient:
    """Sends exactly one chat request per call."""

    def __init__(self, transport: ProviderTransport):
        self._transport = transport

    async def complete(self, config: ModelConfig, payload: Dict[str, Any], agent: str = "rag") -> Any:
        """
        Call the chat model described by ``config``.

        Args:
            config: Chat model configuration
            payload: Wire payload produced by the payload builder for this model
            agent: Logical caller name for logs ("classifier", "rag")

        Returns:
            Raw provider response envelope.

        Raises:
            ConfigValidationError, UnsupportedModelError, EmptyResponseError
        """
        family = validate_model_config(config, kind="chat")
        path = chat_request_path(family, config)
        headers = {
            "Content-Type": "application/json",
            "AI-Resource-Group": config.resource_group,
        }

        start = time.time()
        try:
            response = await self._transport.send(
                config.destination, "POST", path, body=payload, headers=headers
            )
        finally:
            duration = time.time() - start
            record_provider_request("chat", family.value, config.model_name, duration)

        if not response:
            raise EmptyResponseError(destination=config.destination)

        logger.info(
            "completion_received",
            agent=agent,
            model=config.model_name,
            family=family.value,
            latency_ms=int(duration * 1000),
        )
        return response
