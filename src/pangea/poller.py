"""Polling of accepted (HTTP 202) requests.

A request the service could not finish in time answers 202 with a
``request_id``. The poller waits, asks ``GET request/{request_id}`` and
repeats until the result is ready, the service reports a failure, the
``poll_result_timeout`` budget runs out, or the caller cancels::

    PENDING --tick--> POLLING --> PENDING    (still 202)
                         |------> SUCCEEDED  (result present)
                         '------> FAILED     (non-success status)
    PENDING --deadline--> TIMED_OUT
    any     --cancel----> CANCELLED
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, Type

from .exceptions import (
    AcceptedRequestException,
    PangeaCancelledError,
    PangeaException,
    PangeaTimedOutError,
)
from .response import PangeaResponse

INITIAL_POLL_DELAY = 1.0

Fetch = Callable[[str, Optional[Type[Any]], Optional[threading.Event]], PangeaResponse[Any]]
AsyncFetch = Callable[[str, Optional[Type[Any]]], Awaitable[PangeaResponse[Any]]]
Ready = Callable[[AcceptedRequestException], bool]


class PollState(str, Enum):
    PENDING = "pending"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def poll_delays(timeout: float, initial: float = INITIAL_POLL_DELAY) -> Iterator[float]:
    """Yield 1s, 2s, 4s, ... trimmed so that the running sum never exceeds ``timeout``."""
    elapsed = 0.0
    delay = initial
    while elapsed < timeout:
        step = min(delay, timeout - elapsed)
        yield step
        elapsed += step
        delay *= 2


def _wait(seconds: float, cancel: Optional[threading.Event]) -> None:
    if cancel is None:
        time.sleep(seconds)
    elif cancel.wait(seconds):
        raise PangeaCancelledError()


async def _async_wait(seconds: float) -> None:
    await asyncio.sleep(seconds)


class _BasePoller:
    def __init__(self, timeout: float, logger: Optional[logging.Logger] = None) -> None:
        self._timeout = timeout
        self._logger = logger or logging.getLogger("pangea")

    def _transition(self, request_id: Optional[str], state: PollState) -> None:
        self._logger.debug("Polling request %s: %s", request_id, state.value)

    def _timed_out(self, last: AcceptedRequestException, start: float) -> PangeaTimedOutError:
        self._transition(last.request_id, PollState.TIMED_OUT)
        elapsed = time.monotonic() - start
        self._logger.warning("Request %s still pending after %.1fs", last.request_id, elapsed)
        return PangeaTimedOutError(last, elapsed)


class Poller(_BasePoller):
    """Resolves accepted requests by polling ``request/{request_id}``."""

    def __init__(self, fetch: Fetch, timeout: float, logger: Optional[logging.Logger] = None) -> None:
        """Initialize the poller.

        Args:
            fetch: One-shot retrieval of a request result. Raises
                :class:`AcceptedRequestException` while the result is pending.
            timeout: Total polling budget in seconds.
            logger: Logger for state transitions.
        """
        super().__init__(timeout, logger)
        self._fetch = fetch

    def poll(
        self,
        accepted: AcceptedRequestException,
        cancel: Optional[threading.Event] = None,
        ready: Optional[Ready] = None,
    ) -> PangeaResponse[Any]:
        """Poll until ``accepted`` resolves.

        Args:
            accepted: The 202 that started the wait.
            cancel: Optional event; setting it aborts the wait.
            ready: Optional predicate that ends the wait early on a still
                pending response (used to wait for a presigned URL). The
                202 envelope is returned in that case.

        Raises:
            PangeaTimedOutError: If the budget elapsed; carries the latest 202.
            PangeaCancelledError: If ``cancel`` was set.
            PangeaAPIException: If the service reported a failure.
        """
        request_id = accepted.request_id
        last = accepted
        start = time.monotonic()
        deadline = start + self._timeout
        self._transition(request_id, PollState.PENDING)

        for delay in poll_delays(self._timeout):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                _wait(min(delay, remaining), cancel)
            except PangeaCancelledError:
                self._transition(request_id, PollState.CANCELLED)
                raise
            self._transition(request_id, PollState.POLLING)
            try:
                response = self._fetch(request_id, accepted.result_class, cancel)
            except AcceptedRequestException as e:
                last = e
                if ready is not None and ready(e):
                    return e.response
                self._transition(request_id, PollState.PENDING)
                continue
            except PangeaCancelledError:
                self._transition(request_id, PollState.CANCELLED)
                raise
            except PangeaException:
                self._transition(request_id, PollState.FAILED)
                raise
            self._transition(request_id, PollState.SUCCEEDED)
            return response

        raise self._timed_out(last, start)


class AsyncPoller(_BasePoller):
    """Async twin of :class:`Poller`. Cancelling the task cancels the wait."""

    def __init__(self, fetch: AsyncFetch, timeout: float, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(timeout, logger)
        self._fetch = fetch

    async def poll(self, accepted: AcceptedRequestException, ready: Optional[Ready] = None) -> PangeaResponse[Any]:
        request_id = accepted.request_id
        last = accepted
        start = time.monotonic()
        deadline = start + self._timeout
        self._transition(request_id, PollState.PENDING)

        for delay in poll_delays(self._timeout):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                await _async_wait(min(delay, remaining))
                self._transition(request_id, PollState.POLLING)
                response = await self._fetch(request_id, accepted.result_class)
            except AcceptedRequestException as e:
                last = e
                if ready is not None and ready(e):
                    return e.response
                self._transition(request_id, PollState.PENDING)
                continue
            except asyncio.CancelledError:
                self._transition(request_id, PollState.CANCELLED)
                raise
            except PangeaException:
                self._transition(request_id, PollState.FAILED)
                raise
            self._transition(request_id, PollState.SUCCEEDED)
            return response

        raise self._timed_out(last, start)
