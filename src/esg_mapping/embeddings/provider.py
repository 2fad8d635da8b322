# src/esg_mapping/embeddings/provider.py
from __future__ import annotations

import logging
import os
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from openai import OpenAI, RateLimitError

from esg_mapping.core.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# text -> vector
EmbeddingFunction = Callable[[str], Sequence[float]]

RATE_LIMIT_BACKOFF = 3
DEFAULT_BACKOFF = 2


def _is_rate_limit(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    message = str(exc).lower()
    return "quota" in message or "429" in message


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` up to ``max_attempts`` times.

    Waits ``base_delay * 3**i`` after a rate limit / quota error and
    ``base_delay * 2**i`` after any other error. When the attempts run out a
    ProviderError is raised with the last error chained.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(max_attempts):
        try:
            return fn()
        except Exception as exc:  # noqa: BLE001
            rate_limited = _is_rate_limit(exc)

            if attempt == max_attempts - 1:
                logger.error("embedding: giving up after %d attempts: %s", max_attempts, exc)
                raise ProviderError(rate_limited=rate_limited) from exc

            factor = RATE_LIMIT_BACKOFF if rate_limited else DEFAULT_BACKOFF
            delay = base_delay * factor ** attempt
            logger.warning(
                "embedding: retry %d/%d after %.2fs: %s",
                attempt + 1, max_attempts, delay, exc,
            )
            sleep(delay)

    # unreachable, loop always returns or raises
    raise ProviderError()


class OpenAIEmbeddingProvider:
    """
    Embedding function backed by the OpenAI embeddings endpoint.

    Instances are callables (``provider(text) -> vector``) so they can be
    passed anywhere an EmbeddingFunction is expected.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if not self.api_key:
            logger.error("embedding: provider disabled (missing OPENAI_API_KEY).")
            raise ProviderError("Embedding provider is not configured")

        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def _retry(self, fn: Callable[[], T]) -> T:
        return retry_with_backoff(
            fn,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    def embed(self, text: str) -> List[float]:
        client = self._get_client()

        def _call() -> List[float]:
            response = client.embeddings.create(model=self.model, input=text)
            return list(response.data[0].embedding)

        return self._retry(_call)

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed many texts in one request; falls back to one request per text
        when the batch call fails.
        """
        if not texts:
            return []

        client = self._get_client()

        def _call() -> List[List[float]]:
            response = client.embeddings.create(model=self.model, input=list(texts))
            items = sorted(response.data, key=lambda item: item.index)
            return [list(item.embedding) for item in items]

        try:
            return self._retry(_call)
        except ProviderError as exc:
            logger.warning("embedding: batch request failed, embedding one by one: %s", exc.__cause__)
            return [self.embed(t) for t in texts]

    def __call__(self, text: str) -> List[float]:
        return self.embed(text)
