"""HTTP utilities for fetching sitemaps and article pages."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from .config import CrawlConfig

LOGGER = logging.getLogger(__name__)


class HttpFetchError(RuntimeError):
    """Raised when a request fails irrecoverably."""

    def __init__(self, message: str, *, url: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


@dataclass(slots=True)
class FetchResult:
    url: str
    status_code: int
    content: bytes
    encoding: str | None = None

    @property
    def ok(self) -> bool:
        return httpx.codes.is_success(self.status_code)

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")


class RetryingFetcher:
    """HTTP GET with a bounded number of attempts and a fixed delay between them.

    Only transport failures (connection errors, timeouts, broken reads) are
    retried. A response with any status code is handed back to the caller,
    which decides whether that status makes the document usable.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._max_attempts = max(1, config.retry.max_attempts)
        self._delay = max(0.0, config.retry.delay)
        self._timeout = config.timeout.request_timeout
        self._user_agent = config.user_agent
        self._transport = transport
        self._sleep = sleep or time.sleep
        self._client = client or self._build_client()
        self._owns_client = client is None

    def _build_client(self) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self._timeout,
            "headers": {"User-Agent": self._user_agent},
            "follow_redirects": True,
        }
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def fetch(self, url: str) -> FetchResult:
        last_error: httpx.TransportError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._get(url)
            except httpx.TransportError as exc:
                last_error = exc
                if attempt >= self._max_attempts:
                    LOGGER.warning(
                        "Attempt %d/%d failed for %s: %s. Giving up.",
                        attempt,
                        self._max_attempts,
                        url,
                        exc,
                    )
                    break
                LOGGER.warning(
                    "Attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                    attempt,
                    self._max_attempts,
                    url,
                    exc,
                    self._delay,
                )
                self._sleep(self._delay)

        raise HttpFetchError(
            f"after {self._max_attempts} attempts: {last_error}",
            url=url,
            attempts=self._max_attempts,
        ) from last_error

    def fetch_once(self, url: str) -> FetchResult:
        try:
            return self._get(url)
        except httpx.TransportError as exc:
            raise HttpFetchError(f"failed to fetch {url}: {exc}", url=url) from exc

    def _get(self, url: str) -> FetchResult:
        response = self._client.get(url)
        return FetchResult(
            url=str(response.url),
            status_code=response.status_code,
            content=response.content,
            encoding=response.charset_encoding,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RetryingFetcher":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
