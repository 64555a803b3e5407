"""Unit tests for ApprovalQueue."""

import pytest

from guardedAgent.tools.approval_queue import ApprovalQueue
from tests.fakes import ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def queue(clock):
    return ApprovalQueue(ttl_seconds=600, max_pending=3, processed_retention=60, clock=clock)


def test_ids_increase_monotonically(queue):
    first = queue.queue("patch_script", {"path": "A"})
    second = queue.queue("edit_script", {"path": "B"})

    assert (first, second) == (1, 2)
    assert [op.id for op in queue.pending()] == [1, 2]


def test_approve_once(queue):
    op_id = queue.queue("patch_script", {"path": "A"})

    assert queue.approve(op_id).status == "approved"
    assert queue.approve(op_id) is None
    assert queue.reject(op_id) is False


def test_reject(queue):
    op_id = queue.queue("delete_instance", {"path": "Workspace.Part"})

    assert queue.reject(op_id) is True
    assert queue.get(op_id).status == "rejected"
    assert queue.pending() == []


def test_expires_after_ttl(queue, clock):
    op_id = queue.queue("patch_script", {"path": "A"})
    clock.advance(601)

    assert queue.get(op_id).status == "expired"
    assert queue.approve(op_id) is None


def test_cleanup_drops_old_processed(queue, clock):
    op_id = queue.queue("patch_script", {"path": "A"})
    queue.reject(op_id)
    clock.advance(61)

    removed = queue.cleanup()

    assert removed == 1
    assert queue.get(op_id) is None


def test_max_size_evicts_processed_first(queue):
    first = queue.queue("patch_script", {"path": "A"})
    queue.queue("patch_script", {"path": "B"})
    queue.queue("patch_script", {"path": "C"})
    queue.reject(first)

    queue.queue("patch_script", {"path": "D"})
    queue.cleanup()

    assert queue.get(first) is None
    assert queue.get_stats()["total"] == 3


def test_unknown_id(queue):
    assert queue.get(42) is None
    assert queue.approve(42) is None
    assert queue.reject(42) is False


def test_clear_restarts_ids(queue):
    queue.queue("patch_script", {})
    queue.queue("patch_script", {})

    assert queue.clear() == 2
    assert queue.queue("patch_script", {}) == 1


def test_stats(queue):
    queue.queue("patch_script", {})
    op_id = queue.queue("patch_script", {})
    queue.approve(op_id)

    stats = queue.get_stats()

    assert stats["pending"] == 1
    assert stats["approved"] == 1
    assert stats["max_size"] == 3
