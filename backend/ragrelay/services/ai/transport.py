"""
Provider transport: resolves a named destination to an HTTP sender.

Design constraints:
- No provider SDKs; plain httpx against each gateway
- Every call has a bounded timeout
- At most one retry with exponential backoff, and only for transient
  failures (connection errors, timeouts, HTTP 429/5xx, empty bodies)
- Validation problems and 4xx answers are never retried
- One circuit breaker per destination
"""
from typing import Any, Dict, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ragrelay.core.circuit_breaker import CircuitBreaker
from ragrelay.core.config import DestinationConfig, destination_key
from ragrelay.core.errors import ConfigValidationError, EmptyResponseError, ProviderHTTPError
from ragrelay.core.logging import get_logger
from ragrelay.core.metrics import record_provider_error, record_provider_retry

logger = get_logger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Whether a failed call may be retried (and counts against the breaker)."""
    if isinstance(exc, (httpx.TransportError, EmptyResponseError)):
        return True
    if isinstance(exc, ProviderHTTPError):
        return exc.is_transient
    return False


class ProviderTransport:
    """Async HTTP sender for named provider destinations."""

    def __init__(
        self,
        destinations: Mapping[str, DestinationConfig],
        timeout_seconds: float = 30.0,
        max_retries: int = 1,
        backoff_seconds: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._destinations = {destination_key(name): dest for name, dest in destinations.items()}
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._client = client
        self._owns_client = client is None
        self._breakers: Dict[str, CircuitBreaker] = {}

    def resolve(self, destination: str) -> DestinationConfig:
        """
        Look up a destination by name.

        Raises:
            ConfigValidationError if the destination is not configured.
        """
        resolved = self._destinations.get(destination_key(destination or ""))
        if resolved is None:
            raise ConfigValidationError(
                f"Destination {destination} is not configured "
                f"(set DESTINATION_{destination_key(destination or '')}_URL).",
                field="destination",
            )
        return resolved

    def _breaker(self, destination: DestinationConfig) -> CircuitBreaker:
        breaker = self._breakers.get(destination.name)
        if breaker is None:
            breaker = CircuitBreaker(name=f"destination:{destination.name}")
            self._breakers[destination.name] = breaker
        return breaker

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def _send_once(
        self,
        destination: DestinationConfig,
        method: str,
        path: str,
        body: Any,
        headers: Dict[str, str],
    ) -> Any:
        url = f"{destination.base_url.rstrip('/')}/{path.lstrip('/')}"
        response = await self._get_client().request(
            method,
            url,
            json=body,
            headers=headers,
            timeout=self.timeout_seconds,
        )

        if response.status_code >= 400:
            raise ProviderHTTPError(destination.name, response.status_code, response.text)

        if not response.content:
            raise EmptyResponseError(destination=destination.name)
        try:
            data = response.json()
        except ValueError as exc:
            raise EmptyResponseError(
                "Response body is not valid JSON.", destination=destination.name
            ) from exc
        if not data:
            raise EmptyResponseError(destination=destination.name)
        return data

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        destination = retry_state.kwargs.get("destination_name", "unknown")
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        record_provider_retry(destination)
        logger.warning(
            "provider_call_retrying",
            destination=destination,
            attempt=retry_state.attempt_number,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    async def send(
        self,
        destination: str,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Send one request to a named destination and return the decoded JSON body.

        Args:
            destination: Destination name (as configured on the model)
            method: HTTP method
            path: Path and query relative to the destination base URL
            body: JSON-serializable request body
            headers: Extra request headers

        Raises:
            ConfigValidationError: unknown destination
            ProviderHTTPError: non-2xx answer (after the retry, if transient)
            EmptyResponseError: no usable body (after the retry)
            CircuitBreakerOpenError: destination is tripped
            httpx.TransportError: connection failure / timeout (after the retry)
        """
        resolved = self.resolve(destination)
        request_headers: Dict[str, str] = dict(resolved.headers)
        if resolved.token:
            request_headers["Authorization"] = f"Bearer {resolved.token}"
        request_headers.update(headers or {})

        breaker = self._breaker(resolved)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, min=self.backoff_seconds, max=5),
            retry=retry_if_exception(is_transient),
            before_sleep=self._before_sleep,
            reraise=True,
        )

        try:
            return await retrying(
                self._attempt,
                breaker,
                resolved,
                method,
                path,
                body,
                request_headers,
                destination_name=resolved.name,
            )
        except Exception as exc:
            record_provider_error(resolved.name, type(exc).__name__)
            logger.warning(
                "provider_call_failed",
                destination=resolved.name,
                method=method,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

    async def _attempt(
        self,
        breaker: CircuitBreaker,
        destination: DestinationConfig,
        method: str,
        path: str,
        body: Any,
        headers: Dict[str, str],
        destination_name: str,
    ) -> Any:
        return await breaker.call_async(
            self._send_once,
            destination,
            method,
            path,
            body,
            headers,
            is_failure=is_transient,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
