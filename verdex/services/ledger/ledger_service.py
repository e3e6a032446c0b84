# verdex/services/ledger/ledger_service.py
"""
Harvest / distribution ledger.

A batch's ``balance``, ``outQuantity``, ``status`` and ``logs`` are written
here and nowhere else. Every operation that touches both a distribution and
its batch runs inside one ``store.run_atomic`` unit and re-reads the batch
from the transaction snapshot, so a retried unit always works on fresh state.

After every committed operation:

  - ``balance == inQuantity - outQuantity`` for every batch
  - each distribution has exactly one log entry on its batch, keyed by
    ``distributionId``, whose quantity is the negated distribution quantity
  - ``outQuantity`` equals the sum of the batch's outflow log entries
"""

import logging
import math
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from verdex.errors import (
    DuplicateSeedBatchId,
    InsufficientBalance,
    IntegrityError,
    NotFound,
    ValidationError,
)
from verdex.models.ledger.distribution_models import (
    MODE_BREEDING,
    MODE_FIELDS,
    DistributionCreateModel,
    DistributionPatchModel,
)
from verdex.models.ledger.harvest_models import (
    ARCHIVAL_STATUSES,
    STATUS_ACTIVE,
    STATUS_DEPLETED,
    HarvestBatchCreateModel,
    HarvestBatchPatchModel,
)
from verdex.services.ledger.batch_id import derive_batch_id
from verdex.services.ledger.dates import sort_key, to_utc, utcnow
from verdex.services.ledger.store import (
    Doc,
    LedgerStore,
    LedgerTransaction,
    batch_ref,
    distribution_ref,
)

logger = logging.getLogger(__name__)

# suffixes tried when a derived seedBatchId is already taken
MAX_BATCH_ID_SUFFIX = 99

# float slack when comparing kg quantities (0.1 + 0.2 != 0.3)
QUANTITY_TOLERANCE = 1e-9

QUANTITY_FIELDS = ("inQuantity", "outQuantity", "balance")
ALL_MODE_FIELDS = frozenset(f for fields in MODE_FIELDS.values() for f in fields)

HARVEST_DEFAULTS: Dict[str, Any] = {
    "seedBatchId": "",
    "crop": "",
    "variety": "",
    "classification": "",
    "area": "",
    "totalLotArea": 0,
    "germination": 0,
    "datePlanted": None,
    "dateHarvested": None,
    "inQuantity": 0,
    "outQuantity": 0,
    "balance": 0,
    "status": STATUS_ACTIVE,
    "remarks": "",
    "createdBy": "",
    "createdAt": None,
}


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def parse_payload(model_cls: Type[BaseModel], data: Any) -> BaseModel:
    """Runs a pydantic model and reports failures as ValidationError."""
    try:
        return model_cls.model_validate(data if data is not None else {})
    except PydanticValidationError as exc:
        fields: Dict[str, str] = {}
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "__root__"
            fields.setdefault(loc, err.get("msg", "invalid"))
        raise ValidationError(f"Invalid input: {', '.join(sorted(fields))}", fields) from exc


def _num(v, default: float = 0.0) -> float:
    try:
        n = float(v)
    except (TypeError, ValueError):
        return default
    return n if math.isfinite(n) else default


def _positive_quantity(v) -> float:
    try:
        q = float(v)
    except (TypeError, ValueError):
        q = float("nan")
    if not math.isfinite(q) or q <= 0:
        raise ValidationError("Quantity must be a positive number", {"quantity": "must be > 0"})
    return q


def qty_label(q) -> str:
    n = float(q)
    return str(int(n)) if n.is_integer() else str(n)


def derive_status(current: Optional[str], balance: float) -> str:
    if current in ARCHIVAL_STATUSES:
        return current
    return STATUS_ACTIVE if balance > QUANTITY_TOLERANCE else STATUS_DEPLETED


def distribution_note(dist: Doc) -> str:
    q = qty_label(dist["quantity"])
    if dist.get("mode") == MODE_BREEDING:
        return f"Distributed {q}kg for breeding to {dist.get('requestedBy')} (Area: {dist.get('area')})"
    return (
        f"Distributed {q}kg to {dist.get('recipientName')} "
        f"({dist.get('affiliation')}) for {dist.get('purpose')}"
    )


def _log_index(batch: Doc, distribution_id: str) -> int:
    for i, entry in enumerate(batch.get("logs") or []):
        if entry.get("distributionId") == distribution_id:
            return i
    return -1


def _logged_outflow(batch: Doc) -> float:
    return sum(-_num(e.get("quantity")) for e in batch.get("logs") or [] if _num(e.get("quantity")) < 0)


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


def batch_view(doc: Doc) -> Doc:
    view = {**HARVEST_DEFAULTS, **{k: v for k, v in doc.items() if v is not None}}
    view["seedBatchId"] = view["seedBatchId"] or doc.get("id", "")
    view["logs"] = list(doc.get("logs") or [])
    return view


class LedgerService:
    """
    Ledger engine. The store handle is injected; nothing here reaches for
    module-level database state.
    """

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._now = clock

    # =========================================================
    # Harvest batches
    # =========================================================
    def create_harvest_batch(self, data: Dict[str, Any], created_by: str = "") -> str:
        model = parse_payload(HarvestBatchCreateModel, data)
        now = self._now()

        doc = model.model_dump(exclude={"seedBatchId"})
        doc.update(
            datePlanted=to_utc(model.datePlanted),
            dateHarvested=to_utc(model.dateHarvested),
            balance=model.inQuantity,
            outQuantity=0.0,
            status=STATUS_ACTIVE,
            logs=[],
            createdBy=created_by or "",
            createdAt=now,
            updatedAt=now,
        )

        if model.seedBatchId:
            doc["seedBatchId"] = model.seedBatchId
            batch_id = self.store.insert_batch(doc)
        else:
            base = derive_batch_id(model.dateHarvested, model.crop, model.variety)
            batch_id = self._insert_with_derived_id(doc, base)

        logger.info("Created harvest batch %s (%s kg)", batch_id, qty_label(model.inQuantity))
        return batch_id

    def _insert_with_derived_id(self, doc: Doc, base: str) -> str:
        for n in range(1, MAX_BATCH_ID_SUFFIX + 1):
            candidate = base if n == 1 else f"{base}-{n}"
            if self.store.get_batch_by_seed_batch_id(candidate) is not None:
                continue
            try:
                return self.store.insert_batch({**doc, "seedBatchId": candidate})
            except DuplicateSeedBatchId:
                # taken between the lookup and the insert
                continue
        raise DuplicateSeedBatchId(base)

    def update_harvest_batch(self, batch_id: str, patch: Dict[str, Any]) -> None:
        model = parse_payload(HarvestBatchPatchModel, patch)
        fields = {k: v for k, v in model.model_dump(exclude_unset=True).items() if v is not None}
        for k in ("datePlanted", "dateHarvested"):
            if k in fields:
                fields[k] = to_utc(fields[k])

        current = self.store.get_batch_by_id(batch_id)
        if current is None:
            raise NotFound("HarvestBatch", batch_id)
        if "seedBatchId" in fields and fields["seedBatchId"] == current.get("seedBatchId"):
            fields.pop("seedBatchId")
        if not fields:
            return

        # anything touching the business key, quantities or status is decided
        # against the transaction snapshot
        if "seedBatchId" in fields or "status" in fields or any(k in fields for k in QUANTITY_FIELDS):
            self.store.run_atomic(lambda txn: self._update_batch_txn(txn, batch_id, fields))
            return

        fields["updatedAt"] = self._now()
        if not self.store.update_batch_fields(batch_id, fields):
            raise NotFound("HarvestBatch", batch_id)

    def _update_batch_txn(self, txn: LedgerTransaction, batch_id: str, fields: Doc) -> None:
        batch = txn.read(batch_ref(batch_id))
        if batch is None:
            raise NotFound("HarvestBatch", batch_id)

        now = self._now()
        old_key = batch.get("seedBatchId")
        updated = {**batch, **fields}

        in_q = _num(updated.get("inQuantity"))
        out_q = _num(updated.get("outQuantity"))
        if "outQuantity" in fields:
            logged = _logged_outflow(batch)
            if not math.isclose(out_q, logged, abs_tol=QUANTITY_TOLERANCE):
                raise ValidationError(
                    "outQuantity must match the distributions recorded against the batch",
                    {"outQuantity": f"expected {qty_label(logged)}"},
                )
        if in_q < out_q - QUANTITY_TOLERANCE:
            raise ValidationError(
                "inQuantity cannot be less than the quantity already distributed",
                {"inQuantity": f"must be >= {qty_label(out_q)}"},
            )
        balance = in_q - out_q
        if "balance" in fields and not math.isclose(fields["balance"], balance, abs_tol=QUANTITY_TOLERANCE):
            raise ValidationError(
                "balance must equal inQuantity - outQuantity",
                {"balance": f"expected {qty_label(balance)}"},
            )

        updated["outQuantity"] = out_q
        updated["balance"] = balance
        updated["status"] = derive_status(updated.get("status"), balance)
        updated["updatedAt"] = now

        new_key = updated.get("seedBatchId")
        if new_key != old_key:
            clash = txn.find_batch_by_seed_batch_id(new_key)
            if clash is not None and clash["id"] != batch_id:
                raise DuplicateSeedBatchId(new_key)
            linked = txn.find_distributions_by_seed_batch_id(old_key)
            for dist in linked:
                dist["seedBatchId"] = new_key
                dist["updatedAt"] = now
                txn.write(distribution_ref(dist["id"]), dist)
            logger.info(
                "Renamed batch %s -> %s, relinked %d distribution(s)",
                old_key, new_key, len(linked),
            )

        txn.write(batch_ref(batch_id), updated)

    def delete_harvest_batch(self, batch_id: str) -> Dict[str, Any]:
        """Deletes the batch and, in the same unit, every distribution drawn on it."""

        def work(txn: LedgerTransaction) -> Dict[str, Any]:
            batch = txn.read(batch_ref(batch_id))
            if batch is None:
                raise NotFound("HarvestBatch", batch_id)
            linked = txn.find_distributions_by_seed_batch_id(batch.get("seedBatchId"))
            for dist in linked:
                txn.delete(distribution_ref(dist["id"]))
            txn.delete(batch_ref(batch_id))
            return {
                "deletedBatchId": batch_id,
                "deletedDistributionIds": [d["id"] for d in linked],
            }

        result = self.store.run_atomic(work)
        logger.info(
            "Deleted harvest batch %s with %d distribution(s)",
            batch_id, len(result["deletedDistributionIds"]),
        )
        return result

    def get_harvest_batch(self, batch_id: str) -> Doc:
        doc = self.store.get_batch_by_id(batch_id)
        if doc is None:
            raise NotFound("HarvestBatch", batch_id)
        return batch_view(doc)

    def list_harvest_batches(self) -> List[Doc]:
        docs = self.store.list_batches()
        docs.sort(key=lambda d: sort_key(d.get("createdAt")), reverse=True)
        return [batch_view(d) for d in docs]

    def recent_harvests(self, limit: int = 5) -> List[Doc]:
        return self.list_harvest_batches()[:max(limit, 0)]

    def fetch_batch_by_seed_batch_id(self, seed_batch_id: str) -> Optional[Doc]:
        doc = self.store.get_batch_by_seed_batch_id(seed_batch_id)
        return batch_view(doc) if doc is not None else None

    # =========================================================
    # Distributions
    # =========================================================
    def _settle(self, batch: Doc, out_q: float, now: datetime) -> None:
        batch["outQuantity"] = out_q
        batch["balance"] = _num(batch.get("inQuantity")) - out_q
        batch["status"] = derive_status(batch.get("status"), batch["balance"])
        batch["updatedAt"] = now

    def _log_entry(self, dist: Doc, at: datetime) -> Doc:
        mode = dist["mode"]
        entry = {
            "date": at,
            "quantity": -dist["quantity"],
            "note": distribution_note(dist),
            "mode": mode,
            "purpose": dist.get("purpose", ""),
            "distributionId": dist["id"],
        }
        entry.update({k: dist.get(k, "") for k in MODE_FIELDS[mode]})
        return entry

    def _resolve_linked(self, txn: LedgerTransaction, distribution_id: str):
        dist = txn.read(distribution_ref(distribution_id))
        if dist is None:
            raise NotFound("Distribution", distribution_id)

        seed_batch_id = dist.get("seedBatchId")
        batch = txn.find_batch_by_seed_batch_id(seed_batch_id)
        if batch is None:
            logger.error("Distribution %s points at missing batch %s", distribution_id, seed_batch_id)
            raise NotFound("HarvestBatch", seed_batch_id)

        idx = _log_index(batch, distribution_id)
        if idx < 0:
            logger.error("Batch %s has no log entry for distribution %s", seed_batch_id, distribution_id)
            raise IntegrityError(
                f"Log entry for distribution {distribution_id} is missing from batch {seed_batch_id}",
                seed_batch_id=seed_batch_id,
                distribution_id=distribution_id,
            )
        return dist, batch, idx

    def create_distribution(self, data: Dict[str, Any], created_by: str = "") -> str:
        """
        Records an outflow and deducts it from the batch. Not idempotent:
        submitting the same payload twice deducts twice.
        """
        model = parse_payload(DistributionCreateModel, data)

        def work(txn: LedgerTransaction) -> str:
            batch = txn.find_batch_by_seed_batch_id(model.seedBatchId)
            if batch is None:
                raise NotFound("HarvestBatch", model.seedBatchId)

            quantity = _positive_quantity(model.quantity)
            balance = _num(batch.get("balance"))
            if quantity > balance + QUANTITY_TOLERANCE:
                raise InsufficientBalance(model.seedBatchId, quantity, balance)

            now = self._now()
            dist = {
                "id": self.store.new_id(),
                "date": to_utc(model.date),
                "seedBatchId": model.seedBatchId,
                "quantity": quantity,
                "purpose": model.purpose,
                "mode": model.mode,
                **model.mode_fields(),
                "remarks": model.remarks,
                "createdBy": created_by or "",
                "createdAt": now,
            }

            batch["logs"] = [*(batch.get("logs") or []), self._log_entry(dist, now)]
            self._settle(batch, _num(batch.get("outQuantity")) + quantity, now)

            txn.write(distribution_ref(dist["id"]), dist)
            txn.write(batch_ref(batch["id"]), batch)
            return dist["id"]

        dist_id = self.store.run_atomic(work)
        logger.info(
            "Distributed %s kg from %s (distribution %s)",
            qty_label(model.quantity), model.seedBatchId, dist_id,
        )
        return dist_id

    def update_distribution(self, distribution_id: str, patch: Dict[str, Any]) -> None:
        model = parse_payload(DistributionPatchModel, patch)
        fields = {k: v for k, v in model.model_dump(exclude_unset=True).items() if v is not None}

        def work(txn: LedgerTransaction) -> None:
            current, batch, idx = self._resolve_linked(txn, distribution_id)

            merged = parse_payload(
                DistributionCreateModel,
                {**current, "date": _as_date(current.get("date")), **fields},
            )
            new_q = _positive_quantity(merged.quantity)
            diff = new_q - _num(current.get("quantity"))
            balance = _num(batch.get("balance"))
            if diff > QUANTITY_TOLERANCE and balance + QUANTITY_TOLERANCE < diff:
                raise InsufficientBalance(batch.get("seedBatchId"), diff, balance)

            now = self._now()
            dist = {k: v for k, v in current.items() if k not in ALL_MODE_FIELDS}
            dist.update(
                date=to_utc(merged.date),
                quantity=new_q,
                purpose=merged.purpose,
                mode=merged.mode,
                remarks=merged.remarks,
                updatedAt=now,
                **merged.mode_fields(),
            )

            logs = list(batch.get("logs") or [])
            old_entry = logs[idx]
            entry = {k: v for k, v in old_entry.items() if k not in ALL_MODE_FIELDS}
            entry.update(self._log_entry(dist, old_entry.get("date") or now))
            logs[idx] = entry
            batch["logs"] = logs
            self._settle(batch, _num(batch.get("outQuantity")) + diff, now)

            txn.write(distribution_ref(distribution_id), dist)
            txn.write(batch_ref(batch["id"]), batch)

        self.store.run_atomic(work)
        logger.info("Updated distribution %s", distribution_id)

    def delete_distribution(self, distribution_id: str) -> Dict[str, Any]:
        """Removes the distribution and returns its quantity to the batch."""

        def work(txn: LedgerTransaction) -> Dict[str, Any]:
            dist, batch, _ = self._resolve_linked(txn, distribution_id)

            batch["logs"] = [
                e for e in batch.get("logs") or [] if e.get("distributionId") != distribution_id
            ]
            quantity = _num(dist.get("quantity"))
            self._settle(batch, _num(batch.get("outQuantity")) - quantity, self._now())

            txn.delete(distribution_ref(distribution_id))
            txn.write(batch_ref(batch["id"]), batch)
            return {"deletedDistributionId": distribution_id, "updatedBatchId": batch["id"]}

        result = self.store.run_atomic(work)
        logger.info("Deleted distribution %s from batch %s", distribution_id, result["updatedBatchId"])
        return result

    def get_distribution(self, distribution_id: str) -> Doc:
        doc = self.store.get_distribution_by_id(distribution_id)
        if doc is None:
            raise NotFound("Distribution", distribution_id)
        return doc

    def list_distributions(self) -> List[Doc]:
        docs = self.store.list_distributions()
        docs.sort(key=lambda d: sort_key(d.get("date")), reverse=True)
        return docs

    def recent_distributions(self, limit: int = 5) -> List[Doc]:
        return self.list_distributions()[:max(limit, 0)]
