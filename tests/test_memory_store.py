import logging

import pytest

from verdex.errors import DuplicateSeedBatchId, TransactionConflict
from verdex.services.ledger.memory_store import InMemoryLedgerStore
from verdex.services.ledger.store import batch_ref, distribution_ref


@pytest.fixture
def mem():
    return InMemoryLedgerStore(max_retries=3)


def test_failed_unit_writes_nothing(mem):
    batch_id = mem.insert_batch({"seedBatchId": "LOT-1", "balance": 10})

    def work(txn):
        txn.write(distribution_ref("d1"), {"seedBatchId": "LOT-1", "quantity": 4})
        txn.write(batch_ref(batch_id), {"seedBatchId": "LOT-1", "balance": 6})
        raise ValueError("boom")

    with pytest.raises(ValueError):
        mem.run_atomic(work)
    assert mem.list_distributions() == []
    assert mem.get_batch_by_id(batch_id)["balance"] == 10


def test_own_writes_are_visible_inside_the_unit(mem):
    def work(txn):
        txn.write(distribution_ref("d1"), {"seedBatchId": "LOT-1", "quantity": 4})
        assert txn.read(distribution_ref("d1"))["quantity"] == 4
        assert [d["id"] for d in txn.find_distributions_by_seed_batch_id("LOT-1")] == ["d1"]
        txn.delete(distribution_ref("d1"))
        assert txn.read(distribution_ref("d1")) is None
        assert txn.find_distributions_by_seed_batch_id("LOT-1") == []

    mem.run_atomic(work)
    assert mem.list_distributions() == []


def test_stale_read_is_retried_on_fresh_state(mem):
    batch_id = mem.insert_batch({"seedBatchId": "LOT-1", "balance": 10})
    seen = []

    def work(txn):
        batch = txn.read(batch_ref(batch_id))
        seen.append(batch["balance"])
        if len(seen) == 1:
            # another writer lands between our read and our commit
            mem.update_batch_fields(batch_id, {"balance": 7})
            assert txn.read(batch_ref(batch_id))["balance"] == 10
        batch["balance"] -= 1
        txn.write(batch_ref(batch_id), batch)

    mem.run_atomic(work)
    assert seen == [10, 7]
    assert mem.get_batch_by_id(batch_id)["balance"] == 6


def test_phantom_insert_invalidates_a_query(mem):
    attempts = []

    def work(txn):
        attempts.append(len(txn.find_distributions_by_seed_batch_id("LOT-1")))
        if len(attempts) == 1:
            mem.run_atomic(lambda other: other.write(distribution_ref("late"), {"seedBatchId": "LOT-1"}))
        txn.write(distribution_ref("mine"), {"seedBatchId": "LOT-1"})

    mem.run_atomic(work)
    assert attempts == [0, 1]
    assert {d["id"] for d in mem.list_distributions()} == {"late", "mine"}


def test_retries_run_out(mem, caplog):
    batch_id = mem.insert_batch({"seedBatchId": "LOT-1", "balance": 10})
    calls = []

    def work(txn):
        calls.append(1)
        txn.read(batch_ref(batch_id))
        mem.update_batch_fields(batch_id, {"balance": len(calls)})

    with caplog.at_level(logging.WARNING, logger="verdex.services.ledger.memory_store"):
        with pytest.raises(TransactionConflict) as exc_info:
            mem.run_atomic(work)

    assert len(calls) == 3
    assert exc_info.value.attempts == 3
    assert exc_info.value.http_status == 409
    assert sum("conflict" in r.getMessage() for r in caplog.records) == 3


def test_seed_batch_id_is_unique(mem):
    mem.insert_batch({"seedBatchId": "LOT-1"})
    other = mem.insert_batch({"seedBatchId": "LOT-2"})

    with pytest.raises(DuplicateSeedBatchId):
        mem.insert_batch({"seedBatchId": "LOT-1"})
    with pytest.raises(DuplicateSeedBatchId):
        mem.update_batch_fields(other, {"seedBatchId": "LOT-1"})
    with pytest.raises(DuplicateSeedBatchId):
        mem.run_atomic(lambda txn: txn.write(batch_ref("new"), {"seedBatchId": "LOT-1"}))
    assert mem.get_batch_by_id("new") is None


def test_keys_can_be_swapped_in_one_unit(mem):
    a = mem.insert_batch({"seedBatchId": "LOT-A"})
    b = mem.insert_batch({"seedBatchId": "LOT-B"})

    def work(txn):
        txn.write(batch_ref(a), {"seedBatchId": "LOT-B"})
        txn.write(batch_ref(b), {"seedBatchId": "LOT-A"})

    mem.run_atomic(work)
    assert mem.get_batch_by_seed_batch_id("LOT-A")["id"] == b


def test_returned_documents_are_copies(mem):
    batch_id = mem.insert_batch({"seedBatchId": "LOT-1", "logs": []})
    mem.get_batch_by_id(batch_id)["logs"].append({"quantity": -5})
    assert mem.get_batch_by_id(batch_id)["logs"] == []


def test_update_of_unknown_batch(mem):
    assert mem.update_batch_fields("missing", {"remarks": "x"}) is False


def test_list_filters(mem):
    mem.insert_batch({"seedBatchId": "LOT-1", "crop": "Soybean"})
    mem.insert_batch({"seedBatchId": "LOT-2", "crop": "Peanut"})
    assert [b["seedBatchId"] for b in mem.list_batches({"crop": "Peanut"})] == ["LOT-2"]
