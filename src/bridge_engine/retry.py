"""Bounded retry of remote calls with transient/terminal error classification."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import requests
from web3.exceptions import Web3RPCError

from .config import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY
from .exceptions import BridgeEngineError, TransferCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DelayPolicy = Callable[[int], float]

# JSON-RPC error messages that indicate a provider hiccup rather than a rejection.
_TRANSIENT_RPC_MARKERS = (
    "rate limit",
    "too many requests",
    "header not found",
    "timeout",
    "timed out",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "try again",
)


def constant_delay(seconds: float) -> DelayPolicy:
    return lambda _attempt: seconds


def linear_delay(base: float, step: float) -> DelayPolicy:
    """Delay of ``base + step * (attempt - 1)`` before retry number ``attempt``."""

    return lambda attempt: base + step * max(attempt - 1, 0)


class CancellationToken:
    """Caller-controlled abort signal with an optional monotonic deadline."""

    def __init__(self, event: threading.Event | None = None, deadline: float | None = None):
        self._event = event or threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""

        if self._deadline is not None:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                return True
            if remaining < seconds:
                self._event.wait(remaining)
                return True
        return self._event.wait(max(seconds, 0.0)) or self.cancelled

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise TransferCancelledError(f"Transfer cancelled during {stage}", stage=stage)


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth retrying (transport and provider hiccups)."""

    if isinstance(exc, BridgeEngineError):
        return exc.retryable

    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code if exc.response is not None else None
        return status is None or status == 429 or status >= 500

    if isinstance(exc, requests.ConnectionError | requests.Timeout | TimeoutError | ConnectionError):
        return True

    if isinstance(exc, Web3RPCError):
        message = str(exc).lower()
        return any(marker in message for marker in _TRANSIENT_RPC_MARKERS)

    return False


def error_code(exc: BaseException) -> Any:
    """Extract a JSON-RPC or HTTP error code from ``exc`` when one is present."""

    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, Mapping):
        error = rpc_response.get("error")
        if isinstance(error, Mapping) and "code" in error:
            return error["code"]

    if exc.args and isinstance(exc.args[0], Mapping) and "code" in exc.args[0]:
        return exc.args[0]["code"]

    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        return status_code

    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


class RetryExecutor:
    """Run an operation up to ``max_attempts`` times, retrying transient errors only."""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay_policy: DelayPolicy | None = None,
        classify: Callable[[BaseException], bool] = is_transient,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._delay_policy = delay_policy or constant_delay(DEFAULT_RETRY_DELAY)
        self._classify = classify

    def run(
        self,
        operation: Callable[[], T],
        label: str,
        *,
        max_attempts: int | None = None,
        delay_policy: DelayPolicy | None = None,
        cancel: CancellationToken | None = None,
    ) -> T:
        attempts = max_attempts or self._max_attempts
        delay_for = delay_policy or self._delay_policy
        if cancel is not None:
            cancel.raise_if_cancelled(label)

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = delay_for(attempt - 1)
                logger.debug("%s: retrying in %.1fs (attempt %s/%s)", label, delay, attempt, attempts)
                if cancel is not None:
                    if cancel.wait(delay):
                        raise TransferCancelledError(f"{label} cancelled before retry", stage=label)
                elif delay > 0:
                    time.sleep(delay)

            try:
                return operation()
            except Exception as exc:
                transient = self._classify(exc)
                logger.warning(
                    "%s attempt %s/%s failed (code=%s, transient=%s): %s",
                    label,
                    attempt,
                    attempts,
                    error_code(exc),
                    transient,
                    exc,
                )
                if not transient or attempt == attempts:
                    raise

        raise AssertionError("unreachable")  # pragma: no cover
