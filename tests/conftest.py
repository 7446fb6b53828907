import random
from datetime import datetime, timedelta, timezone

import pytest

from pulse_platform.execution.ingress import OrderIngressService
from pulse_platform.execution.slice_executor import SliceExecutorService
from pulse_platform.execution.splitter import SplitterService
from pulse_platform.execution.timeout_monitor import TimeoutMonitorService
from pulse_platform.persistence.database import configure_database, reset_database_path
from pulse_platform.persistence.models import SplitConfig
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository

from .fake_broker import FakeBroker

T0 = datetime(2026, 1, 5, 9, 15, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db(tmp_path):
    path = configure_database(tmp_path / "pulse_test.db")
    yield path
    reset_database_path()


@pytest.fixture
def order_repo(db):
    return ParentOrderRepository()


@pytest.fixture
def slice_repo(db):
    return OrderSliceRepository()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ingress(order_repo, clock):
    return OrderIngressService(order_repo=order_repo, clock=clock)


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
def splitter(order_repo, slice_repo, clock):
    return SplitterService(
        poll_interval=9999,
        order_repo=order_repo,
        slice_repo=slice_repo,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def executor(fake_broker, order_repo, slice_repo, clock):
    return SliceExecutorService(
        broker=fake_broker,
        poll_interval=9999,
        batch_size=50,
        order_repo=order_repo,
        slice_repo=slice_repo,
        clock=clock,
    )


@pytest.fixture
def monitor(order_repo, slice_repo, clock):
    return TimeoutMonitorService(
        interval=9999,
        split_timeout_seconds=300,
        execution_timeout_seconds=120,
        order_repo=order_repo,
        slice_repo=slice_repo,
        clock=clock,
    )


@pytest.fixture
def submit(ingress):
    """Submit an order with sensible defaults."""

    def _submit(
        key="ORD-1",
        instrument="NSE:RELIANCE",
        side="BUY",
        total_quantity=100,
        num_splits=4,
        duration_minutes=60,
        randomize=False,
    ):
        return ingress.create_order(
            order_unique_key=key,
            instrument=instrument,
            side=side,
            total_quantity=total_quantity,
            split_config=SplitConfig(num_splits, duration_minutes, randomize),
        )

    return _submit
