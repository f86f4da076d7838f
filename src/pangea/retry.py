"""Transport-level retries.

Each HTTP attempt ends in one of three ways:

- success: any response that is not classified as retryable,
- retryable: connection failures, 408/425/429, ``503 Retry-After``, and
  5xx or read failures for idempotent requests,
- fatal: everything else, surfaced to the caller without another attempt.

Back-off is exponential with jitter and honours ``Retry-After``. The sum of
all back-offs for one call never exceeds the HTTP timeout.
"""

import logging
import random
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from .config import RetryConfig
from .exceptions import PangeaCancelledError, PangeaTransportError

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})

ResponsePredicate = Callable[[httpx.Response], bool]


def is_retryable_exception(exc: BaseException, idempotent: bool) -> bool:
    """Whether a failed attempt may be repeated.

    Failures that happen before the server can have seen the request are
    always retryable. Anything later only when the request is idempotent.
    """
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout, httpx.RemoteProtocolError)):
        return True
    return idempotent and isinstance(exc, httpx.TransportError)


def is_retryable_response(response: httpx.Response, idempotent: bool) -> bool:
    code = response.status_code
    if code in RETRYABLE_STATUS_CODES:
        return True
    if code == 503 and "retry-after" in response.headers:
        return True
    return idempotent and code >= 500


def is_retryable_storage_response(response: httpx.Response) -> bool:
    """Presigned storage URLs are retried on 5xx only; a 4xx usually means the URL expired."""
    return response.status_code >= 500


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Parse ``Retry-After`` as delta-seconds or an HTTP date."""
    value = response.headers.get("retry-after")
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def backoff_delay(retry_number: int, retry_config: RetryConfig) -> float:
    """Delay before retry ``retry_number`` (0-based): capped doubling with +/-50% jitter."""
    base = min(retry_config.initial_delay * (2**retry_number), retry_config.max_delay)
    return base * random.uniform(0.5, 1.5)


class _wait_backoff(wait_base):
    def __init__(self, retry_config: RetryConfig, budget: float) -> None:
        self._retry_config = retry_config
        self._budget = budget

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = backoff_delay(retry_state.attempt_number - 1, self._retry_config)
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            hinted = retry_after_seconds(outcome.result())
            if hinted is not None:
                delay = hinted
        remaining = self._budget - retry_state.idle_for
        return max(0.0, min(delay, remaining))


class _stop_after_idle(stop_base):
    def __init__(self, budget: float) -> None:
        self._budget = budget

    def __call__(self, retry_state: RetryCallState) -> bool:
        return retry_state.idle_for >= self._budget


def _give_up(retry_state: RetryCallState) -> httpx.Response:
    # Returns the last response, or re-raises the last exception.
    return retry_state.outcome.result()


def _attempt_label(retry_state: RetryCallState) -> str:
    outcome = retry_state.outcome
    if outcome is None:
        return "unknown"
    if outcome.failed:
        return repr(outcome.exception())
    return f"HTTP {outcome.result().status_code}"


class _BaseRetryer:
    def __init__(self, retry_config: RetryConfig, budget: float, logger: Optional[logging.Logger] = None) -> None:
        """Initialize the retryer.

        Args:
            retry_config: Retry policy.
            budget: Upper bound, in seconds, for the sum of all back-offs.
            logger: Logger for retry notices.
        """
        self._retry_config = retry_config
        self._budget = budget
        self._logger = logger or logging.getLogger("pangea")

    @property
    def max_attempts(self) -> int:
        if not self._retry_config.enabled:
            return 1
        return self._retry_config.max_retries + 1

    def _options(self, idempotent: bool, retry_response: Optional[ResponsePredicate] = None) -> dict:
        if retry_response is None:
            retry_response = partial(is_retryable_response, idempotent=idempotent)
        return {
            "stop": stop_after_attempt(self.max_attempts) | _stop_after_idle(self._budget),
            "wait": _wait_backoff(self._retry_config, self._budget),
            "retry": retry_if_exception(lambda e: is_retryable_exception(e, idempotent))
            | retry_if_result(retry_response),
            "retry_error_callback": _give_up,
            "before_sleep": self._log_retry,
        }

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self._logger.warning(
            "Retrying request after %s (attempt %d of %d, waiting %.2fs)",
            _attempt_label(retry_state),
            retry_state.attempt_number,
            self.max_attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )


class Retryer(_BaseRetryer):
    """Runs a single HTTP attempt under the retry policy."""

    def call(
        self,
        send: Callable[[], httpx.Response],
        idempotent: bool = False,
        cancel: Optional[threading.Event] = None,
        retry_response: Optional[ResponsePredicate] = None,
    ) -> httpx.Response:
        """Call ``send`` until it succeeds, fails fatally or the budget is spent.

        ``retry_response`` replaces the default status classification.

        Raises:
            PangeaCancelledError: If ``cancel`` is set before or between attempts.
            PangeaTransportError: If the last attempt failed at the transport level.
        """

        def attempt() -> httpx.Response:
            if cancel is not None and cancel.is_set():
                raise PangeaCancelledError()
            return send()

        def sleep(seconds: float) -> None:
            if cancel is None:
                time.sleep(seconds)
            elif cancel.wait(seconds):
                raise PangeaCancelledError()

        try:
            return Retrying(sleep=sleep, **self._options(idempotent, retry_response))(attempt)
        except httpx.HTTPError as e:
            raise PangeaTransportError(f"HTTP request failed: {e!r}", {"error": type(e).__name__}) from e


class AsyncRetryer(_BaseRetryer):
    """Async twin of :class:`Retryer`. Task cancellation propagates unchanged."""

    async def call(
        self,
        send: Callable[[], Awaitable[httpx.Response]],
        idempotent: bool = False,
        retry_response: Optional[ResponsePredicate] = None,
    ) -> httpx.Response:
        try:
            return await AsyncRetrying(**self._options(idempotent, retry_response))(send)
        except httpx.HTTPError as e:
            raise PangeaTransportError(f"HTTP request failed: {e!r}", {"error": type(e).__name__}) from e
