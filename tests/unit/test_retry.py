"""Unit tests for the async retry helper and currency conversion."""

from decimal import Decimal

import pytest
from libs.common.currency import fiat_to_gcoins, gcoins_to_fiat, to_money
from libs.common.retry import RetryConfig, calculate_delay, retry_async


class Flaky:
    def __init__(self, failures: int, exc: type[BaseException] = ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("transient")
        return value


NO_WAIT = dict(base_delay=0, jitter=False)


# ---------------------------------------------------------------------------
# retry_async
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retry_succeeds_after_transient_failures():
    func = Flaky(failures=2)

    result = await retry_async(func, RetryConfig(max_attempts=3, **NO_WAIT), "ok")

    assert result == "ok"
    assert func.calls == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retry_reraises_after_last_attempt():
    func = Flaky(failures=5)

    with pytest.raises(ConnectionError):
        await retry_async(func, RetryConfig(max_attempts=3, **NO_WAIT), "ok")
    assert func.calls == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_non_retryable_error_propagates_immediately():
    func = Flaky(failures=1, exc=ValueError)
    config = RetryConfig(
        max_attempts=5, retryable_exceptions=(ConnectionError,), **NO_WAIT
    )

    with pytest.raises(ValueError):
        await retry_async(func, config, "ok")
    assert func.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_on_retry_runs_between_attempts_only():
    func = Flaky(failures=2)
    seen = []

    async def reset(exc):
        seen.append(str(exc))

    result = await retry_async(
        func, RetryConfig(max_attempts=3, **NO_WAIT), "ok", on_retry=reset
    )

    assert result == "ok"
    assert seen == ["transient", "transient"]


@pytest.mark.unit
def test_backoff_is_exponential_and_capped():
    config = RetryConfig(base_delay=0.5, max_delay=3.0, jitter=False)

    assert [calculate_delay(n, config) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


@pytest.mark.unit
def test_jitter_stays_within_half_to_full_delay():
    config = RetryConfig(base_delay=2.0, jitter=True)

    for _ in range(20):
        assert 1.0 <= calculate_delay(1, config) <= 2.0


@pytest.mark.unit
def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_currency_conversion_at_default_unit_price():
    assert gcoins_to_fiat(500) == Decimal("5.00")
    assert gcoins_to_fiat(1) == Decimal("0.01")
    assert fiat_to_gcoins("4.999") == 499
    assert to_money("2.345") == Decimal("2.35")
