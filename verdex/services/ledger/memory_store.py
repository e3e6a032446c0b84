# verdex/services/ledger/memory_store.py
"""
Reference ledger store kept in process memory.

Used by the test suite and for local runs without a replica set. It gives the
same guarantees the engine relies on from MongoDB:

  - every transaction reads from one snapshot taken when it starts
  - writes are buffered and applied together at commit
  - commit re-checks every document version and every query result the
    transaction observed; if anything moved, the whole unit is re-run
"""

import itertools
import logging
import threading
import uuid
from copy import deepcopy
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from verdex.errors import DuplicateSeedBatchId, TransactionConflict
from verdex.services.ledger.store import (
    DISTRIBUTIONS,
    HARVESTS,
    Doc,
    DocRef,
    LedgerStore,
    LedgerTransaction,
    T,
    matches,
)

logger = logging.getLogger(__name__)

Row = Tuple[int, Doc]
Snapshot = Dict[str, Dict[str, Row]]


class _WriteConflict(Exception):
    pass


class _MemoryTransaction(LedgerTransaction):

    def __init__(self, snapshot: Snapshot):
        self._snapshot = snapshot
        self.reads: Dict[DocRef, Optional[int]] = {}
        self.queries: List[Tuple[str, str, Any, FrozenSet[str]]] = []
        self.writes: Dict[DocRef, Optional[Doc]] = {}

    def _visible(self, ref: DocRef) -> Optional[Doc]:
        if ref in self.writes:
            return self.writes[ref]
        row = self._snapshot[ref.collection].get(ref.id)
        self.reads.setdefault(ref, row[0] if row else None)
        return row[1] if row else None

    def _query(self, collection: str, field: str, value: Any) -> List[Doc]:
        rows = self._snapshot[collection]
        hit_ids = frozenset(i for i, (_, d) in rows.items() if d.get(field) == value)
        self.queries.append((collection, field, value, hit_ids))

        found: Dict[str, Doc] = {}
        for i, (version, d) in rows.items():
            if i in hit_ids:
                self.reads.setdefault(DocRef(collection, i), version)
                found[i] = d

        # the transaction sees its own buffered writes
        for ref, d in self.writes.items():
            if ref.collection != collection:
                continue
            if d is None or d.get(field) != value:
                found.pop(ref.id, None)
            else:
                found[ref.id] = d

        return [deepcopy(d) for d in found.values()]

    def read(self, ref: DocRef) -> Optional[Doc]:
        doc = self._visible(ref)
        return deepcopy(doc) if doc is not None else None

    def write(self, ref: DocRef, doc: Doc) -> None:
        self.writes[ref] = deepcopy({**doc, "id": ref.id})

    def delete(self, ref: DocRef) -> None:
        self.writes[ref] = None

    def find_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        hits = self._query(HARVESTS, "seedBatchId", seed_batch_id)
        return hits[0] if hits else None

    def find_distributions_by_seed_batch_id(self, seed_batch_id: str) -> List[Doc]:
        return self._query(DISTRIBUTIONS, "seedBatchId", seed_batch_id)


class InMemoryLedgerStore(LedgerStore):

    def __init__(self, max_retries: int = 5):
        self.max_retries = max_retries
        self._lock = threading.Lock()
        self._versions = itertools.count(1)
        self._collections: Snapshot = {HARVESTS: {}, DISTRIBUTIONS: {}}

    def new_id(self) -> str:
        return uuid.uuid4().hex

    # ---------------------------------------------------------
    # Plain reads
    # ---------------------------------------------------------
    def _get(self, collection: str, doc_id: str) -> Optional[Doc]:
        with self._lock:
            row = self._collections[collection].get(doc_id)
        return deepcopy(row[1]) if row else None

    def _scan(self, collection: str, filter: Optional[Doc]) -> List[Doc]:
        with self._lock:
            docs = [d for _, d in self._collections[collection].values()]
        return [deepcopy(d) for d in docs if matches(d, filter)]

    def get_batch_by_id(self, batch_id: str) -> Optional[Doc]:
        return self._get(HARVESTS, batch_id)

    def get_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        hits = self._scan(HARVESTS, {"seedBatchId": seed_batch_id})
        return hits[0] if hits else None

    def list_batches(self, filter: Optional[Doc] = None) -> List[Doc]:
        return self._scan(HARVESTS, filter)

    def get_distribution_by_id(self, distribution_id: str) -> Optional[Doc]:
        return self._get(DISTRIBUTIONS, distribution_id)

    def list_distributions(self, filter: Optional[Doc] = None) -> List[Doc]:
        return self._scan(DISTRIBUTIONS, filter)

    # ---------------------------------------------------------
    # Single-document writes
    # ---------------------------------------------------------
    def _seed_batch_id_taken(self, seed_batch_id: str, ignore: FrozenSet[str] = frozenset()) -> bool:
        return any(
            d.get("seedBatchId") == seed_batch_id
            for i, (_, d) in self._collections[HARVESTS].items()
            if i not in ignore
        )

    def insert_batch(self, doc: Doc) -> str:
        batch_id = doc.get("id") or self.new_id()
        with self._lock:
            if self._seed_batch_id_taken(doc.get("seedBatchId")):
                raise DuplicateSeedBatchId(doc.get("seedBatchId"))
            self._collections[HARVESTS][batch_id] = (
                next(self._versions),
                deepcopy({**doc, "id": batch_id}),
            )
        return batch_id

    def update_batch_fields(self, batch_id: str, fields: Doc) -> bool:
        with self._lock:
            row = self._collections[HARVESTS].get(batch_id)
            if row is None:
                return False
            if "seedBatchId" in fields and self._seed_batch_id_taken(
                fields["seedBatchId"], frozenset({batch_id})
            ):
                raise DuplicateSeedBatchId(fields["seedBatchId"])
            self._collections[HARVESTS][batch_id] = (
                next(self._versions),
                {**row[1], **deepcopy(fields)},
            )
        return True

    # ---------------------------------------------------------
    # Transactions
    # ---------------------------------------------------------
    def _snapshot(self) -> Snapshot:
        # rows are replaced on write, never mutated, so shallow copies are stable
        with self._lock:
            return {name: dict(rows) for name, rows in self._collections.items()}

    def _validate(self, txn: _MemoryTransaction) -> None:
        for ref, version in txn.reads.items():
            row = self._collections[ref.collection].get(ref.id)
            if (row[0] if row else None) != version:
                raise _WriteConflict(ref)

        for collection, field, value, hit_ids in txn.queries:
            current = frozenset(
                i for i, (_, d) in self._collections[collection].items() if d.get(field) == value
            )
            if current != hit_ids:
                raise _WriteConflict((collection, field, value))

    def _check_unique_keys(self, txn: _MemoryTransaction) -> None:
        touched = frozenset(ref.id for ref in txn.writes if ref.collection == HARVESTS)
        seen = set()
        for ref, doc in txn.writes.items():
            if ref.collection != HARVESTS or doc is None:
                continue
            key = doc.get("seedBatchId")
            if key in seen or self._seed_batch_id_taken(key, touched):
                raise DuplicateSeedBatchId(key)
            seen.add(key)

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._lock:
            self._validate(txn)
            self._check_unique_keys(txn)
            for ref, doc in txn.writes.items():
                rows = self._collections[ref.collection]
                if doc is None:
                    rows.pop(ref.id, None)
                else:
                    rows[ref.id] = (next(self._versions), doc)

    def run_atomic(self, work: Callable[[LedgerTransaction], T]) -> T:
        for attempt in range(1, self.max_retries + 1):
            txn = _MemoryTransaction(self._snapshot())
            result = work(txn)
            try:
                self._commit(txn)
            except _WriteConflict as exc:
                logger.warning(
                    "Ledger transaction conflict on %s (attempt %d/%d)",
                    exc.args[0], attempt, self.max_retries,
                )
                continue
            return result

        logger.error("Ledger transaction gave up after %d attempts", self.max_retries)
        raise TransactionConflict(self.max_retries)
