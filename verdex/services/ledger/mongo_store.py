# verdex/services/ledger/mongo_store.py
"""
Ledger store on MongoDB.

Multi-document transactions need a replica set (Atlas clusters are one).
Documents keep their string id in ``_id``; callers only ever see ``id``.
"""

import logging
from typing import Callable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from verdex.errors import DuplicateSeedBatchId, TransactionConflict
from verdex.services.ledger.store import (
    DISTRIBUTIONS,
    HARVESTS,
    Doc,
    DocRef,
    LedgerStore,
    LedgerTransaction,
    T,
)

logger = logging.getLogger(__name__)

TRANSIENT = "TransientTransactionError"
UNKNOWN_COMMIT = "UnknownTransactionCommitResult"


def _out(doc: Optional[Doc]) -> Optional[Doc]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _in(doc: Doc, doc_id: str) -> Doc:
    doc = {k: v for k, v in doc.items() if k != "id"}
    doc["_id"] = doc_id
    return doc


def _duplicate_key(exc: DuplicateKeyError, fallback: str) -> DuplicateSeedBatchId:
    key = (getattr(exc, "details", None) or {}).get("keyValue", {}).get("seedBatchId")
    return DuplicateSeedBatchId(key or fallback)


class _MongoTransaction(LedgerTransaction):

    def __init__(self, db, session):
        self._db = db
        self._session = session

    def read(self, ref: DocRef) -> Optional[Doc]:
        return _out(self._db[ref.collection].find_one({"_id": ref.id}, session=self._session))

    def write(self, ref: DocRef, doc: Doc) -> None:
        try:
            self._db[ref.collection].replace_one(
                {"_id": ref.id}, _in(doc, ref.id), upsert=True, session=self._session
            )
        except DuplicateKeyError as exc:
            raise _duplicate_key(exc, doc.get("seedBatchId", "")) from exc

    def delete(self, ref: DocRef) -> None:
        self._db[ref.collection].delete_one({"_id": ref.id}, session=self._session)

    def find_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        return _out(self._db[HARVESTS].find_one({"seedBatchId": seed_batch_id}, session=self._session))

    def find_distributions_by_seed_batch_id(self, seed_batch_id: str) -> List[Doc]:
        cur = self._db[DISTRIBUTIONS].find({"seedBatchId": seed_batch_id}, session=self._session)
        return [_out(d) for d in cur]


class MongoLedgerStore(LedgerStore):

    def __init__(self, client, db, max_retries: int = 5, max_commit_time_ms: Optional[int] = None):
        self._client = client
        self._db = db
        self.max_retries = max_retries
        self.max_commit_time_ms = max_commit_time_ms

    def new_id(self) -> str:
        return str(ObjectId())

    def ensure_indexes(self) -> None:
        self._db[HARVESTS].create_index([("seedBatchId", ASCENDING)], unique=True)
        self._db[HARVESTS].create_index([("createdAt", DESCENDING)])
        self._db[DISTRIBUTIONS].create_index([("seedBatchId", ASCENDING)])
        self._db[DISTRIBUTIONS].create_index([("date", DESCENDING)])

    # ---------------------------------------------------------
    # Plain reads
    # ---------------------------------------------------------
    def get_batch_by_id(self, batch_id: str) -> Optional[Doc]:
        return _out(self._db[HARVESTS].find_one({"_id": batch_id}))

    def get_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        return _out(self._db[HARVESTS].find_one({"seedBatchId": seed_batch_id}))

    def list_batches(self, filter: Optional[Doc] = None) -> List[Doc]:
        return [_out(d) for d in self._db[HARVESTS].find(filter or {})]

    def get_distribution_by_id(self, distribution_id: str) -> Optional[Doc]:
        return _out(self._db[DISTRIBUTIONS].find_one({"_id": distribution_id}))

    def list_distributions(self, filter: Optional[Doc] = None) -> List[Doc]:
        return [_out(d) for d in self._db[DISTRIBUTIONS].find(filter or {})]

    # ---------------------------------------------------------
    # Single-document writes
    # ---------------------------------------------------------
    def insert_batch(self, doc: Doc) -> str:
        batch_id = doc.get("id") or self.new_id()
        try:
            self._db[HARVESTS].insert_one(_in(doc, batch_id))
        except DuplicateKeyError as exc:
            raise _duplicate_key(exc, doc.get("seedBatchId", "")) from exc
        return batch_id

    def update_batch_fields(self, batch_id: str, fields: Doc) -> bool:
        fields = {k: v for k, v in fields.items() if k not in ("id", "_id")}
        try:
            res = self._db[HARVESTS].update_one({"_id": batch_id}, {"$set": fields})
        except DuplicateKeyError as exc:
            raise _duplicate_key(exc, fields.get("seedBatchId", "")) from exc
        return res.matched_count == 1

    # ---------------------------------------------------------
    # Transactions
    # ---------------------------------------------------------
    def _commit(self, session) -> None:
        # a commit with an unknown outcome is safe to re-send as-is
        for attempt in range(1, self.max_retries + 1):
            try:
                session.commit_transaction()
                return
            except PyMongoError as exc:
                if exc.has_error_label(UNKNOWN_COMMIT) and attempt < self.max_retries:
                    logger.warning("Commit outcome unknown, retrying commit: %s", exc)
                    continue
                raise

    def run_atomic(self, work: Callable[[LedgerTransaction], T]) -> T:
        with self._client.start_session() as session:
            for attempt in range(1, self.max_retries + 1):
                session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                    max_commit_time_ms=self.max_commit_time_ms,
                )
                try:
                    result = work(_MongoTransaction(self._db, session))
                except PyMongoError as exc:
                    session.abort_transaction()
                    if exc.has_error_label(TRANSIENT):
                        logger.warning(
                            "Ledger transaction conflict (attempt %d/%d): %s",
                            attempt, self.max_retries, exc,
                        )
                        continue
                    raise
                except Exception:
                    session.abort_transaction()
                    raise

                try:
                    self._commit(session)
                except PyMongoError as exc:
                    if exc.has_error_label(TRANSIENT):
                        logger.warning(
                            "Ledger commit conflict (attempt %d/%d): %s",
                            attempt, self.max_retries, exc,
                        )
                        continue
                    raise
                return result

        logger.error("Ledger transaction gave up after %d attempts", self.max_retries)
        raise TransactionConflict(self.max_retries)
