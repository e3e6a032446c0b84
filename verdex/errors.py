# verdex/errors.py
"""
Typed errors raised by the ledger.

Every class carries a machine-readable ``code`` and the HTTP status the
Flask layer answers with, so routes never parse message strings.

    VerdexError
    +-- ValidationError
    |   +-- InvalidInput
    |   +-- DuplicateSeedBatchId
    +-- NotFound
    +-- InsufficientBalance
    +-- IntegrityError
    +-- TransactionConflict
"""

from typing import Dict, Optional


class VerdexError(Exception):
    code: str = "VERDEX_ERROR"
    http_status: int = 500

    def to_dict(self) -> Dict[str, object]:
        return {"ok": False, "err": str(self), "code": self.code}


class ValidationError(VerdexError):
    """Malformed or missing input; the caller can correct it."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        self.fields = dict(fields or {})
        super().__init__(message)

    def to_dict(self) -> Dict[str, object]:
        d = super().to_dict()
        if self.fields:
            d["fields"] = self.fields
        return d


class InvalidInput(ValidationError):
    code: str = "INVALID_INPUT"


class DuplicateSeedBatchId(ValidationError):
    code: str = "DUPLICATE_SEED_BATCH_ID"
    http_status: int = 409

    def __init__(self, seed_batch_id: str):
        self.seed_batch_id = seed_batch_id
        super().__init__(
            f"A harvest batch with ID {seed_batch_id} already exists",
            {"seedBatchId": "already in use"},
        )


class NotFound(VerdexError):
    code: str = "NOT_FOUND"
    http_status: int = 404

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} not found: {key}")


class InsufficientBalance(VerdexError):
    code: str = "INSUFFICIENT_BALANCE"
    http_status: int = 409

    def __init__(self, seed_batch_id: str, requested: float, available: float):
        self.seed_batch_id = seed_batch_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient quantity available in {seed_batch_id}: "
            f"requested {requested}kg, available {available}kg"
        )


class IntegrityError(VerdexError):
    """Stored data is already inconsistent; not user-correctable."""

    code: str = "LEDGER_INTEGRITY_ERROR"
    http_status: int = 500

    def __init__(self, message: str, seed_batch_id: str = "", distribution_id: str = ""):
        self.seed_batch_id = seed_batch_id
        self.distribution_id = distribution_id
        super().__init__(message)


class TransactionConflict(VerdexError):
    """Optimistic retries ran out; the whole operation is safe to retry."""

    code: str = "TRANSACTION_CONFLICT"
    http_status: int = 409

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")
