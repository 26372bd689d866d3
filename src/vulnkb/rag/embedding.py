"""
Embedding providers.

The indexer and retriever only depend on `EmbeddingProvider.embed`; any
object with that coroutine can be plugged in. `OpenAIEmbedder` talks to an
OpenAI-compatible `/embeddings` endpoint.
"""

from typing import Any, Protocol

import httpx
import numpy as np
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from ..config.settings import EmbeddingConfig
from ..errors import EmbeddingError
from ..observability.logging import get_logger
from ..observability.metrics import counter, timer

logger = get_logger(__name__)

RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.ConnectError)


class EmbeddingProvider(Protocol):
    """Text-to-vector service used for both chunks and queries."""

    async def embed(self, text: str, *, timeout: float | None = None) -> np.ndarray:
        """Return a float32 vector, or raise EmbeddingError."""
        ...


class OpenAIEmbedder:
    """
    Async client for OpenAI-compatible embedding APIs.

    Transient transport errors are retried with exponential backoff; any
    other failure surfaces as EmbeddingError.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        http_client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ):
        self.config = config
        self._http_client = http_client
        self._owned_client = http_client is None
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=8)

    async def __aenter__(self) -> "OpenAIEmbedder":
        self._client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def embed(self, text: str, *, timeout: float | None = None) -> np.ndarray:
        if not text or not text.strip():
            raise EmbeddingError("cannot embed empty text")

        try:
            with timer("vulnkb_embedding_request", {"model": self.config.model}):
                payload = await self._request(text, timeout)
        except httpx.HTTPStatusError as e:
            counter("vulnkb_embedding_errors_total").add(1, {"kind": "status"})
            raise EmbeddingError(
                f"embedding API returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            counter("vulnkb_embedding_errors_total").add(1, {"kind": "transport"})
            raise EmbeddingError(f"embedding request failed: {e}") from e

        return self._parse_vector(payload)

    async def _request(self, text: str, timeout: float | None) -> dict[str, Any]:
        client = self._client()
        url = f"{self.config.base_url}/embeddings"
        request_timeout = timeout if timeout is not None else self.config.timeout

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying embedding request",
                        attempt=attempt.retry_state.attempt_number,
                        model=self.config.model,
                    )
                response = await client.post(
                    url,
                    json={"model": self.config.model, "input": text},
                    headers=self._get_headers(),
                    timeout=request_timeout,
                )
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError as e:
                    raise EmbeddingError(
                        f"embedding API returned a non-JSON body: {response.text[:200]}"
                    ) from e

        raise EmbeddingError("embedding request was not attempted")

    def _parse_vector(self, payload: dict[str, Any]) -> np.ndarray:
        try:
            raw = payload["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingError("malformed embedding response") from e

        try:
            vector = np.asarray(raw, dtype=np.float32)
        except (ValueError, TypeError) as e:
            raise EmbeddingError("embedding response contained non-numeric values") from e

        if vector.ndim != 1 or vector.size == 0:
            raise EmbeddingError("embedding response was not a flat non-empty vector")
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("embedding response contained non-finite values")
        return vector
