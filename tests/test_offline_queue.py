import pytest

from fieldops.sync.offline_queue import OfflineQueue


def _keys(batch):
    return [(c.entity_type, c.entity_id, c.operation) for c in batch]


def test_batch_is_oldest_first(queue):
    queue.enqueue("customers", "E1", "create", {"id": "E1", "name": "Ann"})
    queue.enqueue("customers", "E1", "update", {"id": "E1", "name": "Ann B."})
    queue.enqueue("jobs", "E2", "create", {"id": "E2", "title": "No heat"})

    batch = queue.dequeue_batch()

    assert _keys(batch) == [
        ("customers", "E1", "create"),
        ("customers", "E1", "update"),
        ("jobs", "E2", "create"),
    ]
    assert [c.id for c in batch] == sorted(c.id for c in batch)
    assert batch[0].payload == {"id": "E1", "name": "Ann"}
    assert all(c.status == "pending" and c.retry_count == 0 for c in batch)


def test_dequeue_does_not_remove(queue):
    queue.enqueue("jobs", "J1", "create", {"id": "J1"})

    assert len(queue.dequeue_batch()) == 1
    assert len(queue.dequeue_batch()) == 1
    assert queue.pending_count() == 1


def test_batch_size_is_respected(queue):
    for n in range(5):
        queue.enqueue("jobs", f"J{n}", "create", {"id": f"J{n}"})

    assert [c.entity_id for c in queue.dequeue_batch(max_items=2)] == ["J0", "J1"]


def test_failed_entry_holds_back_later_changes_to_the_same_entity(queue):
    first = queue.enqueue("customers", "E1", "create", {"id": "E1"})
    queue.enqueue("customers", "E1", "update", {"id": "E1", "name": "x"})
    other = queue.enqueue("customers", "E2", "create", {"id": "E2"})

    queue.mark_failed(first, "422 name is required")

    assert [c.id for c in queue.dequeue_batch()] == [other]
    failed = queue.get(first)
    assert failed.status == "failed"
    assert failed.retry_count == 1
    assert failed.last_error == "422 name is required"
    assert failed.last_attempt_at is not None


def test_retry_puts_failed_entry_back_in_place(queue):
    first = queue.enqueue("customers", "E1", "create", {"id": "E1"})
    second = queue.enqueue("customers", "E1", "update", {"id": "E1"})
    queue.mark_failed(first, "rejected")

    assert queue.retry(first) is True

    assert [c.id for c in queue.dequeue_batch()] == [first, second]
    assert queue.get(first).last_error is None
    assert queue.failed_count() == 0


def test_retry_only_applies_to_failed_entries(queue):
    entry = queue.enqueue("jobs", "J1", "create", {"id": "J1"})

    assert queue.retry(entry) is False
    assert queue.retry(9999) is False


def test_retry_all_failed(queue):
    a = queue.enqueue("jobs", "J1", "create", {"id": "J1"})
    b = queue.enqueue("jobs", "J2", "create", {"id": "J2"})
    queue.mark_failed(a, "x")
    queue.mark_failed(b, "y")

    assert queue.retry_all_failed() == 2
    assert queue.pending_count() == 2


def test_delivered_entries_leave_the_queue(queue):
    entry = queue.enqueue("jobs", "J1", "delete")

    assert queue.mark_delivered(entry) is True
    assert queue.get(entry) is None
    assert queue.pending_count() == 0
    assert queue.mark_delivered(entry) is False


def test_transient_failure_keeps_entry_pending(queue):
    entry = queue.enqueue("jobs", "J1", "update", {"id": "J1"})

    queue.record_transient_failure(entry, "timed out")
    queue.record_transient_failure(entry, "timed out")

    change = queue.get(entry)
    assert change.status == "pending"
    assert change.retry_count == 2
    assert change.last_error == "timed out"


def test_discard(queue):
    entry = queue.enqueue("jobs", "J1", "create", {"id": "J1"})
    queue.mark_failed(entry, "x")

    assert queue.discard(entry) is True
    assert queue.failed_count() == 0
    assert queue.discard(entry) is False


def test_has_outstanding(queue):
    assert queue.has_outstanding("jobs", "J1") is False
    entry = queue.enqueue("jobs", "J1", "create", {"id": "J1"})
    assert queue.has_outstanding("jobs", "J1") is True
    queue.mark_failed(entry, "x")
    assert queue.has_outstanding("jobs", "J1") is True
    assert queue.has_outstanding("customers", "J1") is False


def test_entries_survive_a_new_queue_instance(session_factory):
    OfflineQueue(session_factory).enqueue("jobs", "J1", "create", {"id": "J1"}, description="New job J1")

    entries = OfflineQueue(session_factory).pending_entries()

    assert len(entries) == 1
    assert entries[0].description == "New job J1"
    assert entries[0].queued_at is not None


def test_enqueue_rejects_unknown_operation(queue):
    with pytest.raises(ValueError):
        queue.enqueue("jobs", "J1", "upsert", {"id": "J1"})


def test_to_dict_is_json_friendly(queue):
    entry = queue.enqueue("jobs", "J1", "create", {"id": "J1"})

    data = queue.get(entry).to_dict()

    assert data["operation"] == "create"
    assert isinstance(data["queued_at"], str)
