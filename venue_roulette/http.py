"""HTTP client, retry policy and the shared endpoint fallback loop."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

import requests

from . import config

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransportError(RuntimeError):
    """One endpoint was unreachable or answered with something unusable."""


class EmptyResultError(TransportError):
    """The endpoint answered but had nothing usable for us."""


class ExhaustedSourcesError(RuntimeError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class NoLocationSelectedError(RuntimeError):
    pass


_KINDS = ("geocode", "venues")


@dataclass
class RequestMetrics:
    network: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in _KINDS})
    failures: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in _KINDS})
    empty_results: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in _KINDS})

    def _check(self, kind: str) -> None:
        if kind not in _KINDS:
            raise ValueError(f"Unknown request kind: {kind}")

    def inc_network(self, kind: str) -> None:
        self._check(kind)
        self.network[kind] += 1

    def inc_failure(self, kind: str) -> None:
        self._check(kind)
        self.failures[kind] += 1

    def inc_empty(self, kind: str) -> None:
        self._check(kind)
        self.empty_results[kind] += 1

    def summary(self) -> Dict[str, Dict[str, int]]:
        return {
            kind: {
                "requests": self.network[kind],
                "failures": self.failures[kind],
                "empty": self.empty_results[kind],
            }
            for kind in _KINDS
        }


@dataclass(frozen=True)
class RetryPolicy:
    """Sequential fallback over endpoints, tier by tier.

    Attempt ``i`` of a tier that fails is followed by a pause of
    ``base_delay + i * delay_increment`` seconds.
    """

    base_delay: float = config.RETRY_BASE_DELAY_SECONDS
    delay_increment: float = config.RETRY_DELAY_INCREMENT_SECONDS
    max_attempts_per_tier: Optional[int] = None

    def delay_for(self, attempt_index: int) -> float:
        return max(0.0, self.base_delay + attempt_index * self.delay_increment)


NO_BACKOFF = RetryPolicy(base_delay=0.0, delay_increment=0.0)


def attempt_with_fallback(
    tiers: Iterable[Iterable[Callable[[], T]]],
    policy: RetryPolicy = NO_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "request",
) -> T:
    """Run attempts in order until one returns without raising.

    Each tier is a sequence of zero-argument callables. A callable signals
    failure by raising ``TransportError`` (``EmptyResultError`` included);
    the next one is tried after the policy's backoff. No pause follows the
    last attempt: when every attempt of every tier has failed,
    ``ExhaustedSourcesError`` is raised at once with the last error.
    """
    last_error: Optional[BaseException] = None
    pending_delay = 0.0
    for tier_index, attempts in enumerate(tiers):
        for attempt_index, attempt in enumerate(attempts):
            if (
                policy.max_attempts_per_tier is not None
                and attempt_index >= policy.max_attempts_per_tier
            ):
                break
            if pending_delay > 0:
                sleep(pending_delay)
            try:
                return attempt()
            except TransportError as exc:
                last_error = exc
                logger.warning(
                    "%s failed (tier %s, attempt %s): %s",
                    label,
                    tier_index + 1,
                    attempt_index + 1,
                    exc,
                )
            pending_delay = policy.delay_for(attempt_index)
    raise ExhaustedSourcesError(f"{label}: all sources exhausted", last_error)


class HttpClient:
    def __init__(
        self,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        user_agent: str = config.HTTP_USER_AGENT,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.metrics = metrics
        self.session = requests.Session()

    def _headers(self, extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        kind: str = "geocode",
    ) -> Any:
        if self.metrics is not None:
            self.metrics.inc_network(kind)
        try:
            resp = self.session.get(
                url, params=params, headers=self._headers(), timeout=self.timeout
            )
        except requests.RequestException as exc:
            self._record_failure(kind)
            raise TransportError(f"{url}: {exc}") from exc
        return self._decode(resp, url, kind)

    def post_form(
        self,
        url: str,
        data: Dict[str, str],
        kind: str = "venues",
    ) -> Any:
        headers = self._headers(
            {"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"}
        )
        if self.metrics is not None:
            self.metrics.inc_network(kind)
        try:
            resp = self.session.post(url, data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            self._record_failure(kind)
            raise TransportError(f"{url}: {exc}") from exc
        return self._decode(resp, url, kind)

    def _decode(self, resp: requests.Response, url: str, kind: str) -> Any:
        status = resp.status_code
        if status != 200:
            logger.warning("HTTP %s from %s", status, url)
            self._record_failure(kind)
            raise TransportError(f"HTTP {status} from {url}")
        try:
            return resp.json()
        except ValueError as exc:
            logger.error("Non-JSON response from %s", url)
            self._record_failure(kind)
            raise TransportError(f"Non-JSON response from {url}") from exc

    def _record_failure(self, kind: str) -> None:
        if self.metrics is not None:
            self.metrics.inc_failure(kind)
