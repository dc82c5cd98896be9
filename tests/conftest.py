# tests/conftest.py
import pytest

from ndc_qty.config import RegistryApiConfig, RetryConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0)


@pytest.fixture
def naming_conf(fast_retry):
    return RegistryApiConfig(
        name="rxnorm",
        base_url="https://rxnav.test/REST",
        rate_limit_per_second=100,
        fresh_ttl_seconds=3600,
        retry=fast_retry,
    )


@pytest.fixture
def packaging_conf(fast_retry):
    return RegistryApiConfig(
        name="fda",
        base_url="https://fda.test/drug/ndc.json",
        rate_limit_per_second=100,
        fresh_ttl_seconds=24 * 3600,
        retry=fast_retry,
    )
