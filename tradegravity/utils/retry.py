"""Rate-limited GET with bounded retries and API-key rotation.

One logical request is tried against each candidate key in turn (primary,
then secondary). Per key there are ``max_retries + 1`` attempts:

- 2xx: returned immediately.
- 401/403: the key is abandoned, next key.
- 403 mentioning "quota": QuotaExceededError, raised at once. The account is
  throttled, so other keys are not tried.
- 429: wait for ``Retry-After`` (seconds or HTTP-date), else a
  "try again in N" hint in the body, else 1 second, then retry the same key.
- anything else (including transport errors): next key.

When every key is exhausted the last error is raised.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from ..exceptions import (
    ConfigurationError,
    DataProviderError,
    NoRecordsError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderRequestError,
    QuotaExceededError,
)
from ..services.rate_limiter import TokenBucketLimiter
from .logging_security import redact_headers, redact_url

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 1.0
RETRY_HINT_MARKER = "try again in"


def candidate_keys(primary: Optional[str], secondary: Optional[str] = None) -> List[str]:
    """Primary key, then the secondary one if it is set and different."""
    keys: List[str] = []
    primary = (primary or "").strip()
    secondary = (secondary or "").strip()
    if primary:
        keys.append(primary)
    if secondary and secondary != primary:
        keys.append(secondary)
    return keys


def _body_message(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return body


def parse_retry_seconds(message: str) -> Optional[int]:
    """Find N in a "... try again in N seconds" phrase."""
    lowered = (message or "").lower()
    index = lowered.find(RETRY_HINT_MARKER)
    if index == -1:
        return None
    for part in lowered[index + len(RETRY_HINT_MARKER):].split():
        if part.isdigit() and int(part) > 0:
            return int(part)
    return None


def parse_retry_after(
    header: Optional[str],
    body: str = "",
    now: Optional[datetime] = None,
) -> float:
    """Seconds to wait after a 429.

    ``Retry-After`` may be a number of seconds or an HTTP-date. Without a
    usable header the body is scanned for a retry hint. Defaults to 1 second.
    """
    value = (header or "").strip()
    if value:
        if value.isdigit():
            return float(int(value))
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            wait = (when - (now or datetime.now(timezone.utc))).total_seconds()
            if wait > 0:
                return wait

    seconds = parse_retry_seconds(_body_message(body)) if body else None
    if seconds:
        return float(seconds)
    return DEFAULT_RETRY_DELAY


def is_quota_exceeded(body: str) -> bool:
    return "quota" in (body or "").lower()


def _snippet(body: str, limit: int = 200) -> str:
    return (body or "").strip()[:limit]


class KeyRotatingFetcher:
    """Executes GET requests for one provider.

    Owns nothing but references: the provider passes in its own client and
    limiter so every request shares the provider's admission control.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: TokenBucketLimiter,
        provider: str,
        keys: Sequence[str] = (),
        *,
        key_param: str = "",
        key_header: str = "",
        require_key: bool = False,
        max_retries: int = 3,
        user_agent: str = "",
        no_records_marker: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            client: HTTP client owned by the provider
            limiter: Rate limiter owned by the provider
            provider: Provider name for errors and logs
            keys: Candidate API keys in order of preference
            key_param: Query parameter carrying the key ("" to skip)
            key_header: Header carrying the key ("" to skip)
            require_key: Refuse to run unauthenticated when no key is set
            max_retries: Extra attempts per key after a 429
            user_agent: User-Agent header value
            no_records_marker: Body text that turns a 404 into NoRecordsError
            sleep: Awaitable sleep used for 429 backoff
        """
        self.client = client
        self.limiter = limiter
        self.provider = provider
        self.keys = list(keys)
        self.key_param = key_param
        self.key_header = key_header
        self.require_key = require_key
        self.max_retries = max_retries
        self.user_agent = user_agent
        self.no_records_marker = no_records_marker
        self._sleep = sleep

    def _params(self, params: Optional[Mapping[str, Any]], key: Optional[str]) -> Dict[str, Any]:
        query = dict(params or {})
        if key and self.key_param:
            query[self.key_param] = key
        return query

    def _headers(self, key: Optional[str], accept: str) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if accept:
            headers["Accept"] = accept
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if key and self.key_header:
            headers[self.key_header] = key
        return headers

    async def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """GET ``url`` with key rotation and 429 backoff.

        Raises:
            ConfigurationError: A key is required and none is configured
            QuotaExceededError: The account quota is exhausted
            NoRecordsError: The provider signalled an empty result
            DataProviderError: Last error once every key is exhausted
        """
        keys: List[Optional[str]] = list(self.keys)
        if not keys:
            if self.require_key:
                raise ConfigurationError(f"{self.provider}: api key is required")
            keys = [None]

        attempts = max(self.max_retries + 1, 1)
        last_error: Optional[DataProviderError] = None

        for key_index, key in enumerate(keys):
            for attempt in range(attempts):
                await self.limiter.wait()
                request_params = self._params(params, key)
                request_headers = self._headers(key, accept)
                safe_url = redact_url(str(httpx.URL(url, params=request_params)))
                logger.debug(f"{self.provider} GET {safe_url} headers={redact_headers(request_headers)}")
                try:
                    response = await self.client.get(url, params=request_params, headers=request_headers)
                except httpx.TransportError as exc:
                    last_error = ProviderRequestError(
                        f"request failed: {type(exc).__name__}: {exc}", provider=self.provider
                    )
                    logger.warning(
                        f"{self.provider} transport error on key #{key_index + 1} for {safe_url}: {exc}"
                    )
                    break

                status = response.status_code
                if 200 <= status < 300:
                    return response

                body = response.text
                if self.no_records_marker and status == 404 and self.no_records_marker in body:
                    raise NoRecordsError("no records found", provider=self.provider)

                if status == 403 and is_quota_exceeded(body):
                    raise QuotaExceededError(
                        f"quota exceeded: {_snippet(body)}", provider=self.provider, status_code=status
                    )

                if status in (401, 403):
                    last_error = ProviderAuthError(
                        f"request failed ({status}): {_snippet(body)}",
                        provider=self.provider,
                        status_code=status,
                    )
                    logger.warning(
                        f"{self.provider} rejected key #{key_index + 1} ({status}), "
                        f"trying next key if available"
                    )
                    break

                if status == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"), body)
                    last_error = ProviderRateLimitError(
                        f"rate limited: {_snippet(body)}", provider=self.provider, retry_after=retry_after
                    )
                    if attempt < attempts - 1:
                        logger.warning(
                            f"{self.provider} rate limited (429), attempt {attempt + 1}/{attempts}. "
                            f"Retrying after {retry_after:.1f}s..."
                        )
                        await self._sleep(retry_after)
                        continue
                    break

                last_error = ProviderRequestError(
                    f"request failed ({status}): {_snippet(body)}",
                    provider=self.provider,
                    status_code=status,
                )
                logger.warning(f"{self.provider} request failed with HTTP {status} on key #{key_index + 1}")
                break

        if last_error is not None:
            raise last_error
        raise ProviderRequestError("request failed", provider=self.provider)
