"""
Shared HTTP utilities for provider adapters backed by public REST APIs.

The helper wraps HTTPX with a bounded retry policy: a fixed number of attempts
with linearly increasing waits and a per-request timeout. Retries are the only
resilience the adapters own; failure tracking and alerting live in
:mod:`listing_autofill.core.instrumentation`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Mapping, MutableMapping, Optional

import httpx
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from ...core.logging import get_logger
from ..base import ProviderError

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


class APIError(ProviderError):
    """Raised when an HTTP API call fails."""


@dataclass(slots=True)
class BaseAPIClient:
    """
    Base synchronous HTTP client with retry support.

    Parameters
    ----------
    base_url:
        Root URL for the upstream service.
    timeout:
        Request timeout in seconds.
    max_attempts:
        Total attempts per request, including the first one.
    backoff_seconds:
        Wait before the second attempt; each further attempt waits one more
        increment (1 s, 2 s, … with the default).
    default_headers:
        Headers automatically attached to every request.
    """

    base_url: str
    timeout: float = DEFAULT_TIMEOUT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"base_url": self.base_url},
        )

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=dict(self.default_headers),
            follow_redirects=True,
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self.logger.debug("HTTP request", extra={"method": method, "url": url, "params": kwargs.get("params")})

        retrying = Retrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            stop=stop_after_attempt(max(1, self.max_attempts)),
            reraise=True,
        )

        def _send() -> httpx.Response:
            with self._build_client() as client:
                response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        try:
            response = retrying(_send)
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "HTTP request failed after retries",
                extra={"method": method, "url": url, "status_code": exc.response.status_code},
            )
            raise APIError(
                f"HTTP {exc.response.status_code} error for {method} {url} after {self.max_attempts} attempts: {exc.response.reason_phrase}"
            ) from exc
        except (httpx.HTTPError, RetryError) as exc:
            self.logger.error("HTTP request failed after retries", extra={"method": method, "url": url, "error": str(exc)})
            raise APIError(f"Failed to call {method} {url} after {self.max_attempts} attempts: {exc}") from exc

        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return response

    def _get_json(self, url: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = self._request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise APIError(f"Failed to decode JSON from {response.url}: {exc}") from exc
