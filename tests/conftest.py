import pytest

from stocksync.config import SyncSettings
from stocksync.jobs.client import BulkJobClient
from stocksync.store.fixture import FixtureStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> SyncSettings:
    return SyncSettings(
        shop_domain="example.myshopify.com",
        access_token="shpat_test",
        max_fetch_retries=2,
        retry_backoff_seconds=0,
        poll_interval_seconds=2.0,
        poll_timeout_seconds=60.0,
        cancel_settle_seconds=3.0,
    )


@pytest.fixture()
def store() -> FixtureStore:
    return FixtureStore.from_file()


@pytest.fixture()
def client(store: FixtureStore, clock: FakeClock) -> BulkJobClient:
    return BulkJobClient(store, clock=clock, cancel_settle_seconds=3.0)
