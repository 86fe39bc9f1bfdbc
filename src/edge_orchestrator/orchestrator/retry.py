"""
edge_orchestrator.orchestrator.retry

Bounded exponential backoff for transient provisioning errors.

Responsibilities:
- Describe a phase's retry budget and backoff curve (`RetryPolicy`).
- Run an attempt coroutine, retrying only retryable kinds with backoff between attempts.
- Bound a single collaborator call by the phase timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.errors import (
    ErrorKind,
    RecoveryConflict,
    classify_error,
    is_retryable,
)
from edge_orchestrator.settings import Settings

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    timeout: float = 60.0

    @classmethod
    def for_phase(cls, settings: Settings, phase: str) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_budget_for(phase),
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_backoff_multiplier,
            max_delay=settings.retry_max_delay_seconds,
            timeout=settings.timeout_for(phase),
        )

    def delay_before(self, attempt: int) -> float:
        # attempt is 1-based; no wait before the first one.
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (self.multiplier ** (attempt - 2)), self.max_delay)


async def call_with_timeout(awaitable: Awaitable[T], *, timeout: float) -> T:
    """Collaborator calls only; a timeout surfaces as TimeoutError (classified transient)."""

    return await asyncio.wait_for(awaitable, timeout=timeout)


class AttemptFailed(Exception):
    """Raised by `run_with_retry` when the final attempt fails; carries the classification."""

    def __init__(self, *, cause: BaseException, kind: ErrorKind, attempts: int) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.kind = kind
        self.attempts = attempts


async def run_with_retry(
    attempt_fn: Callable[[int], Awaitable[T]],
    *,
    policy: RetryPolicy,
    on_failure: Callable[[int, BaseException, ErrorKind], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[T, int]:
    """
    Call `attempt_fn(attempt)` until it succeeds, the error is not retryable, or the
    budget is spent. Returns (result, attempts_used). `on_failure` runs for every failed
    attempt (the session runner records a PhaseRecord there).
    """

    attempt = 1
    while True:
        delay = policy.delay_before(attempt)
        if delay > 0:
            await sleep(delay)
        try:
            result = await attempt_fn(attempt)
            return result, attempt
        except RecoveryConflict:
            # Lost the session to another owner: stop without recording anything.
            raise
        except Exception as e:
            kind = classify_error(e)
            if on_failure is not None:
                await on_failure(attempt, e, kind)
            if not is_retryable(kind) or attempt >= policy.max_attempts:
                raise AttemptFailed(cause=e, kind=kind, attempts=attempt) from e
            log.warning(
                "phase_attempt_retry",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                kind=str(kind),
                error=str(e),
                next_delay=policy.delay_before(attempt + 1),
            )
            attempt += 1


# --- Module Notes -----------------------------------------------------------
# Only TransientProvisioningError-class failures are retried; configuration and
# validation errors escalate on the first attempt.
# RecoveryConflict is never classified: it aborts the run instead of failing the phase.
