import httpx
import pytest

from fakes import no_sleep
from launchpad.constants import ErrorCode
from launchpad.errors import LaunchpadError, NetworkError
from launchpad.retry import RetryConfig, RetryError, RetryScheduler, is_recoverable, with_retry


class Flaky:
    def __init__(self, failures: list[BaseException], value="ok"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def scheduler(sleeps):
    async def record(delay):
        sleeps.append(delay)
        await no_sleep(delay)

    return RetryScheduler(sleep=record)


async def test_returns_first_success(scheduler, sleeps):
    op = Flaky([])
    assert await scheduler.execute(op) == "ok"
    assert op.calls == 1
    assert sleeps == []


async def test_recovers_after_transient_failures(scheduler, sleeps):
    op = Flaky([NetworkError("boom"), TimeoutError("slow")])
    retries = []

    result = await scheduler.execute(op, RetryConfig(max_attempts=3), on_retry=lambda *a: retries.append(a))

    assert result == "ok"
    assert op.calls == 3
    assert sleeps == [1.0, 2.0]
    assert [(attempt, delay) for attempt, delay, _ in retries] == [(1, 1.0), (2, 2.0)]
    assert isinstance(retries[0][2], NetworkError)


async def test_exhaustion_wraps_last_error(scheduler, sleeps):
    last = NetworkError("still down")
    op = Flaky([NetworkError("down"), NetworkError("down"), last])

    with pytest.raises(RetryError) as exc_info:
        await scheduler.execute(op, RetryConfig(max_attempts=3))

    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error is last
    assert exc_info.value.__cause__ is last
    assert len(sleeps) == 2


async def test_non_recoverable_propagates_unwrapped(scheduler, sleeps):
    boom = ValueError("bad parameter")
    op = Flaky([boom])

    with pytest.raises(ValueError) as exc_info:
        await scheduler.execute(op)

    assert exc_info.value is boom
    assert op.calls == 1
    assert sleeps == []


async def test_delay_is_capped(scheduler, sleeps):
    op = Flaky([NetworkError("x")] * 5)
    config = RetryConfig(max_attempts=6, initial_delay=1.0, max_delay=5.0, backoff_multiplier=3.0)

    await scheduler.execute(op, config)

    assert sleeps == [1.0, 3.0, 5.0, 5.0, 5.0]


async def test_with_retry_uses_defaults():
    assert await with_retry(Flaky([])) == "ok"


@pytest.mark.parametrize(
    "exc",
    [
        NetworkError("x"),
        TimeoutError(),
        ConnectionRefusedError(),
        httpx.ConnectError("refused"),
        LaunchpadError(ErrorCode.NETWORK_ERROR),
        LaunchpadError(ErrorCode.TIMEOUT_ERROR),
        RuntimeError("fetch failed"),
        RuntimeError("ECONNREFUSED 127.0.0.1:51234"),
    ],
)
def test_recoverable(exc):
    assert is_recoverable(exc)


@pytest.mark.parametrize(
    "exc",
    [
        ValueError("bad input"),
        LaunchpadError(ErrorCode.SIMULATION_FAILED),
        LaunchpadError(ErrorCode.ACCOUNT_NOT_FOUND),
        LaunchpadError(ErrorCode.WALLET_REJECTED),
    ],
)
def test_not_recoverable(exc):
    assert not is_recoverable(exc)


def test_config_validation_and_from_dict():
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)
    config = RetryConfig.from_dict({"max_attempts": 5, "initial_delay": 0.5})
    assert config.max_attempts == 5
    assert config.delay_for(1) == 0.5
    assert config.delay_for(2) == 1.0
    assert config.max_delay == 10.0
