"""
Ledger-wide properties: conservation of quantity, balance arithmetic,
log/distribution pairing, and no oversubscription under concurrent writers.
"""

import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from tests.ledger_helpers import (
    assert_ledger_consistent,
    breeding_payload,
    exportation_payload,
    harvest_payload,
)
from verdex.errors import InsufficientBalance
from verdex.services.ledger.ledger_service import LedgerService
from verdex.services.ledger.memory_store import InMemoryLedgerStore


def test_random_operation_sequence_keeps_every_invariant(ledger, store):
    rng = random.Random(20240315)
    keys = []
    for variety, qty in (("Tiwala 6", 120), ("Tiwala 8", 75), ("PSB Sy 2", 40)):
        batch_id = ledger.create_harvest_batch(harvest_payload(variety=variety, inQuantity=qty))
        keys.append(ledger.get_harvest_batch(batch_id)["seedBatchId"])

    live = []
    refused = 0
    for _ in range(250):
        op = rng.choice(("create", "create", "update", "delete"))
        try:
            if op == "create" or not live:
                build = rng.choice((exportation_payload, breeding_payload))
                live.append(ledger.create_distribution(build(rng.choice(keys), rng.randint(1, 25))))
            elif op == "update":
                ledger.update_distribution(rng.choice(live), {"quantity": rng.randint(1, 25)})
            else:
                ledger.delete_distribution(live.pop(rng.randrange(len(live))))
        except InsufficientBalance:
            refused += 1
        assert_ledger_consistent(store)

    assert refused > 0
    for b in store.list_batches():
        assert b["balance"] >= 0
        assert b["status"] == ("Active" if b["balance"] > 0 else "Depleted")


def test_delete_undoes_create_exactly(ledger, batch):
    ledger.create_distribution(exportation_payload(batch["seedBatchId"], 12))
    before = ledger.get_harvest_batch(batch["id"])

    dist_id = ledger.create_distribution(breeding_payload(batch["seedBatchId"], 33))
    ledger.delete_distribution(dist_id)
    after = ledger.get_harvest_batch(batch["id"])

    for k in ("balance", "outQuantity", "status", "logs"):
        assert after[k] == before[k]


def test_unchanged_update_is_a_no_op_on_quantities(ledger, batch):
    dist_id = ledger.create_distribution(exportation_payload(batch["seedBatchId"], 30))
    before = ledger.get_harvest_batch(batch["id"])

    ledger.update_distribution(dist_id, {"quantity": 30})
    ledger.update_distribution(dist_id, {"quantity": 30})
    after = ledger.get_harvest_batch(batch["id"])

    assert (after["balance"], after["outQuantity"]) == (before["balance"], before["outQuantity"])
    assert after["logs"][0]["quantity"] == -30


@pytest.mark.parametrize("workers, quantity", [(12, 15), (8, 30), (20, 7)])
def test_concurrent_distributions_never_oversubscribe(clock, workers, quantity):
    store = InMemoryLedgerStore(max_retries=50)
    ledger = LedgerService(store, clock=clock)
    batch_id = ledger.create_harvest_batch(harvest_payload(inQuantity=100))
    sbid = ledger.get_harvest_batch(batch_id)["seedBatchId"]

    barrier = threading.Barrier(workers)

    def draw():
        barrier.wait()
        try:
            ledger.create_distribution(exportation_payload(sbid, quantity))
            return True
        except InsufficientBalance:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda _: draw(), range(workers)))

    expected = min(workers, 100 // quantity)
    assert outcomes.count(True) == expected
    b = ledger.get_harvest_batch(batch_id)
    assert b["balance"] == 100 - expected * quantity
    assert len(b["logs"]) == expected
    assert_ledger_consistent(store)


def test_concurrent_updates_and_deletes_stay_consistent(clock):
    store = InMemoryLedgerStore(max_retries=100)
    ledger = LedgerService(store, clock=clock)
    batch_id = ledger.create_harvest_batch(harvest_payload(inQuantity=200))
    sbid = ledger.get_harvest_batch(batch_id)["seedBatchId"]
    dist_ids = [ledger.create_distribution(exportation_payload(sbid, 10)) for _ in range(10)]

    barrier = threading.Barrier(len(dist_ids))

    def churn(i):
        barrier.wait()
        if i % 2:
            ledger.delete_distribution(dist_ids[i])
        else:
            ledger.update_distribution(dist_ids[i], {"quantity": 25})

    with ThreadPoolExecutor(max_workers=len(dist_ids)) as pool:
        list(pool.map(churn, range(len(dist_ids))))

    b = ledger.get_harvest_batch(batch_id)
    assert b["outQuantity"] == 5 * 25
    assert b["balance"] == 200 - 125
    assert_ledger_consistent(store)
