# verdex/services/ledger/store.py
"""
Storage contract the ledger engine is written against.

Documents cross this boundary as plain dicts keyed by ``id`` (the backend maps
it to its own primary key). Two collections exist: harvest batches and
distributions. Distributions point at their batch by ``seedBatchId``, so every
lookup by business key goes through the two ``*_by_seed_batch_id`` methods.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, NamedTuple, Optional, TypeVar

HARVESTS = "seedHarvests"
DISTRIBUTIONS = "seedDistributions"

T = TypeVar("T")
Doc = Dict[str, Any]


class DocRef(NamedTuple):
    collection: str
    id: str


def batch_ref(batch_id: str) -> DocRef:
    return DocRef(HARVESTS, batch_id)


def distribution_ref(distribution_id: str) -> DocRef:
    return DocRef(DISTRIBUTIONS, distribution_id)


class LedgerTransaction(ABC):
    """
    Handle passed to ``run_atomic`` work. Reads see one snapshot; writes are
    buffered and land together at commit, or not at all.
    """

    @abstractmethod
    def read(self, ref: DocRef) -> Optional[Doc]:
        ...

    @abstractmethod
    def write(self, ref: DocRef, doc: Doc) -> None:
        ...

    @abstractmethod
    def delete(self, ref: DocRef) -> None:
        ...

    @abstractmethod
    def find_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def find_distributions_by_seed_batch_id(self, seed_batch_id: str) -> List[Doc]:
        ...


class LedgerStore(ABC):

    @abstractmethod
    def new_id(self) -> str:
        ...

    # ---------------- point lookups / scans ----------------
    @abstractmethod
    def get_batch_by_id(self, batch_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def get_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def list_batches(self, filter: Optional[Doc] = None) -> List[Doc]:
        """Equality filter on top-level fields; ``None`` lists everything."""

    @abstractmethod
    def get_distribution_by_id(self, distribution_id: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def list_distributions(self, filter: Optional[Doc] = None) -> List[Doc]:
        ...

    # ---------------- single-document writes ----------------
    @abstractmethod
    def insert_batch(self, doc: Doc) -> str:
        """Insert a new batch; raises DuplicateSeedBatchId on a key clash."""

    @abstractmethod
    def update_batch_fields(self, batch_id: str, fields: Doc) -> bool:
        """Set top-level fields on one batch. False when the batch is gone."""

    # ---------------- transactions ----------------
    @abstractmethod
    def run_atomic(self, work: Callable[[LedgerTransaction], T]) -> T:
        """
        Run ``work`` in one transaction, retrying it from scratch on write
        conflicts. Raises TransactionConflict once retries are exhausted.
        Exceptions raised by ``work`` abort the transaction and propagate.
        """


def matches(doc: Doc, filter: Optional[Doc]) -> bool:
    if not filter:
        return True
    return all(doc.get(k) == v for k, v in filter.items())
