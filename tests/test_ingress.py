import threading

import pytest

from pulse_platform.execution.errors import DuplicateKeyConflict, ValidationError
from pulse_platform.execution.ingress import OrderIngressService
from pulse_platform.persistence.models import OrderStatus, SplitConfig


def _total_orders(order_repo):
    return sum(order_repo.count_by_status().values())


class TestCreateOrder:

    def test_new_order_is_pending(self, submit, order_repo, clock):
        order = submit()

        stored = order_repo.get_by_id(order.order_id)
        assert stored is not None
        assert stored.status == OrderStatus.PENDING
        assert stored.order_unique_key == "ORD-1"
        assert stored.total_quantity == 100
        assert stored.split_config == SplitConfig(4, 60, False)
        assert stored.created_at == clock.now
        assert stored.skip_reason is None

    def test_identical_replay_returns_existing_order(self, submit, order_repo):
        first = submit()
        second = submit()

        assert second.order_id == first.order_id
        assert _total_orders(order_repo) == 1

    def test_same_key_different_payload_conflicts(self, submit, order_repo):
        first = submit()

        with pytest.raises(DuplicateKeyConflict) as exc:
            submit(total_quantity=200)

        assert exc.value.existing_order_id == first.order_id
        assert _total_orders(order_repo) == 1

    def test_randomize_flag_is_part_of_identity(self, submit):
        submit(randomize=False)
        with pytest.raises(DuplicateKeyConflict):
            submit(randomize=True)

    def test_insert_recorded_in_history(self, submit, order_repo):
        order = submit()
        history = order_repo.get_history(order.order_id)

        assert len(history) == 1
        assert history[0]["operation"] == "INSERT"
        assert history[0]["status"] == "PENDING"


class TestValidation:

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"total_quantity": 3, "num_splits": 5}, "total_quantity"),
            ({"total_quantity": 0}, "total_quantity"),
            ({"total_quantity": True}, "total_quantity"),
            ({"instrument": "RELIANCE"}, "instrument"),
            ({"instrument": "nse:RELIANCE"}, "instrument"),
            ({"side": "HOLD"}, "side"),
            ({"key": "  "}, "order_unique_key"),
            ({"key": "K" * 256}, "order_unique_key"),
            ({"num_splits": 1}, "split_config.num_splits"),
            ({"num_splits": 101, "total_quantity": 1000}, "split_config.num_splits"),
            ({"duration_minutes": 0}, "split_config.duration_minutes"),
            ({"duration_minutes": 1441}, "split_config.duration_minutes"),
        ],
    )
    def test_invalid_request_rejected_before_store(self, submit, order_repo, overrides, field):
        with pytest.raises(ValidationError) as exc:
            submit(**overrides)

        assert exc.value.field == field
        assert isinstance(exc.value, ValueError)
        assert _total_orders(order_repo) == 0

    def test_boundary_values_accepted(self, submit):
        submit(key="lo", total_quantity=2, num_splits=2, duration_minutes=1)
        submit(key="hi", total_quantity=100, num_splits=100, duration_minutes=1440)


class TestConcurrentIngress:

    def test_concurrent_identical_submissions_create_one_order(self, order_repo, clock):
        ingress = OrderIngressService(order_repo=order_repo, clock=clock)
        barrier = threading.Barrier(8)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                order = ingress.create_order("RACE-1", "NSE:INFY", "SELL", 50, SplitConfig(5, 10, True))
                results.append(order.order_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(results) == 8
        assert len(set(results)) == 1
        assert _total_orders(order_repo) == 1

    def test_concurrent_conflicting_submissions_keep_single_winner(self, order_repo, clock):
        ingress = OrderIngressService(order_repo=order_repo, clock=clock)
        barrier = threading.Barrier(6)
        winners, conflicts = [], []

        def worker(qty):
            barrier.wait()
            try:
                order = ingress.create_order("RACE-2", "NSE:INFY", "BUY", qty, SplitConfig(2, 10, False))
                winners.append((qty, order.order_id))
            except DuplicateKeyConflict as e:
                conflicts.append((qty, e.existing_order_id))

        threads = [threading.Thread(target=worker, args=(10 if i % 2 else 20,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        stored = order_repo.get_by_unique_key("RACE-2")
        assert _total_orders(order_repo) == 1
        assert len(winners) + len(conflicts) == 6
        assert all(order_id == stored.order_id for _, order_id in winners + conflicts)
        assert all(qty == stored.total_quantity for qty, _ in winners)
        assert all(qty != stored.total_quantity for qty, _ in conflicts)
