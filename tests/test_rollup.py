from itertools import permutations

from pulse_platform.execution.rollup import recompute_parent_status
from pulse_platform.persistence.models import OrderStatus


def _finish(slice_repo, slice_id, outcome, now):
    slice_repo.claim(slice_id, now)
    if outcome == "P":
        slice_repo.mark_processed(slice_id, f"B-{slice_id[:8]}", now)
    else:
        slice_repo.mark_failed(slice_id, "rejected", now)


class TestRollup:

    def test_unchanged_while_slices_outstanding(self, submit, splitter, order_repo, slice_repo, clock):
        order = submit(total_quantity=9, num_splits=3, duration_minutes=3)
        splitter.poll_once()
        first = slice_repo.get_for_parent(order.order_id)[0]

        _finish(slice_repo, first.slice_id, "F", clock())

        assert recompute_parent_status(order.order_id, clock(), order_repo, slice_repo) is None
        assert order_repo.get_by_id(order.order_id).status == OrderStatus.IN_PROGRESS

    def test_done_is_applied_once(self, submit, splitter, order_repo, slice_repo, clock):
        order = submit(total_quantity=9, num_splits=3, duration_minutes=3)
        splitter.poll_once()
        for s in slice_repo.get_for_parent(order.order_id):
            _finish(slice_repo, s.slice_id, "P", clock())

        assert recompute_parent_status(order.order_id, clock(), order_repo, slice_repo) == OrderStatus.DONE
        assert recompute_parent_status(order.order_id, clock(), order_repo, slice_repo) is None

        history = [h["status"] for h in order_repo.get_history(order.order_id)]
        assert history.count("DONE") == 1

    def test_no_slices_means_no_transition(self, submit, order_repo, slice_repo, clock):
        order = submit()
        order_repo.claim_next_pending(clock())

        assert recompute_parent_status(order.order_id, clock(), order_repo, slice_repo) is None
        assert order_repo.get_by_id(order.order_id).status == OrderStatus.IN_PROGRESS

    def test_final_status_independent_of_completion_order(self, submit, splitter, order_repo, slice_repo, clock):
        outcomes = ("P", "F", "P")
        finals = set()

        for i, order_of_completion in enumerate(permutations(range(3))):
            order = submit(key=f"PERM-{i}", total_quantity=9, num_splits=3, duration_minutes=3)
            splitter.poll_once()
            slices = slice_repo.get_for_parent(order.order_id)

            for idx in order_of_completion:
                _finish(slice_repo, slices[idx].slice_id, outcomes[idx], clock())
                recompute_parent_status(order.order_id, clock(), order_repo, slice_repo)

            parent = order_repo.get_by_id(order.order_id)
            finals.add((parent.status, parent.skip_reason))

        assert finals == {(OrderStatus.SKIPPED, "1 of 3 slices failed")}
