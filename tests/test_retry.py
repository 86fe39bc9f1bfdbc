from __future__ import annotations

import asyncio

import httpx
import pytest

from edge_orchestrator.orchestrator.errors import (
    ConfigurationError,
    ErrorKind,
    TransientProvisioningError,
    ValidationFailed,
    classify_error,
    failure_label,
)
from edge_orchestrator.orchestrator.retry import AttemptFailed, RetryPolicy, run_with_retry


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.test/workers")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


def test_backoff_grows_exponentially_and_is_capped() -> None:
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, multiplier=2.0, max_delay=5.0)
    assert [policy.delay_before(n) for n in range(1, 6)] == [0.0, 1.0, 2.0, 4.0, 5.0]


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (TransientProvisioningError("quota"), ErrorKind.transient),
        (ConfigurationError("bad request"), ErrorKind.configuration),
        (ValidationFailed(["bad domain"]), ErrorKind.validation),
        (asyncio.TimeoutError(), ErrorKind.transient),
        (_status_error(429), ErrorKind.transient),
        (_status_error(502), ErrorKind.transient),
        (_status_error(400), ErrorKind.configuration),
        (httpx.ConnectError("refused"), ErrorKind.transient),
        (KeyError("database_id"), ErrorKind.internal),
    ],
)
def test_classify_error(exc: BaseException, kind: ErrorKind) -> None:
    assert classify_error(exc) is kind


def test_failure_labels() -> None:
    assert failure_label(ErrorKind.configuration) == "ProvisioningFailed"
    assert failure_label(ErrorKind.transient) == "ProvisioningFailed"
    assert failure_label(ErrorKind.validation) == "ValidationFailed"
    assert failure_label(ErrorKind.cancelled) == "SessionCancelled"


@pytest.mark.asyncio
async def test_non_retryable_error_fails_on_first_attempt() -> None:
    failures: list[tuple[int, ErrorKind]] = []
    sleeps: list[float] = []

    async def attempt(_n: int) -> str:
        raise ConfigurationError("invalid script", "deployer")

    async def on_failure(n: int, _exc: BaseException, kind: ErrorKind) -> None:
        failures.append((n, kind))

    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    with pytest.raises(AttemptFailed) as excinfo:
        await run_with_retry(attempt, policy=RetryPolicy(max_attempts=3), on_failure=on_failure, sleep=sleep)

    assert excinfo.value.attempts == 1
    assert excinfo.value.kind is ErrorKind.configuration
    assert failures == [(1, ErrorKind.configuration)]
    assert sleeps == []


@pytest.mark.asyncio
async def test_transient_errors_retry_within_budget() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    async def attempt(n: int) -> str:
        calls.append(n)
        if n < 3:
            raise TransientProvisioningError("429", "database")
        return "db-1"

    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    result, used = await run_with_retry(
        attempt, policy=RetryPolicy(max_attempts=3, base_delay=0.5), sleep=sleep
    )

    assert (result, used) == ("db-1", 3)
    assert calls == [1, 2, 3]
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_budget_of_one_never_retries() -> None:
    async def attempt(_n: int) -> str:
        raise TransientProvisioningError("timeout")

    with pytest.raises(AttemptFailed) as excinfo:
        await run_with_retry(attempt, policy=RetryPolicy(max_attempts=1), sleep=asyncio.sleep)
    assert excinfo.value.attempts == 1
    assert excinfo.value.kind is ErrorKind.transient
