# Overview: Engine error taxonomy; every error carries structured details for the caller.

from __future__ import annotations

from decimal import Decimal

from ..numeric import decimal_str


class EngineError(Exception):
    """Base for costing/reconciliation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(EngineError):
    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class BatchNotFound(NotFoundError):
    def __init__(self, batch_id):
        super().__init__("batch", batch_id)


class InsufficientStockError(EngineError):
    """Allocation could not cover the requested quantity; blocks the whole entry."""
    def __init__(self, item_id: int, requested: Decimal, available: Decimal, shortfall: Decimal):
        super().__init__(
            f"Insufficient stock for item {item_id}: requested {requested}, "
            f"available {available}, short {shortfall}",
            {
                "item_id": item_id,
                "requested": decimal_str(requested),
                "available": decimal_str(available),
                "shortfall": decimal_str(shortfall),
            },
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available
        self.shortfall = shortfall


class SeasonClosedError(EngineError):
    def __init__(self, season_id: int):
        super().__init__(f"Season {season_id} is closed", {"season_id": season_id})
        self.season_id = season_id


class InvariantViolation(EngineError):
    """A batch mutation would leave remaining_quantity outside [0, original_quantity]."""
    def __init__(self, batch_id: int, remaining: Decimal, original: Decimal, delta: Decimal):
        super().__init__(
            f"Batch {batch_id}: applying {delta} to remaining {remaining} "
            f"leaves it outside [0, {original}]",
            {
                "batch_id": batch_id,
                "remaining": decimal_str(remaining),
                "original": decimal_str(original),
                "delta": decimal_str(delta),
            },
        )
        self.batch_id = batch_id


class PartialCommitError(EngineError):
    """
    Batch mutations were flushed but the transaction could not be finalized.

    The session is rolled back before this is raised; details name the batch
    calls that were applied and the one that failed so an operator can
    reconcile if the backend did not honor the rollback.
    """
    def __init__(self, entry_id, applied: list, failed: list, cause: Exception | None = None):
        super().__init__(
            f"Entry {entry_id}: batch changes could not be committed",
            {"entry_id": entry_id, "applied": applied, "failed": failed},
        )
        self.entry_id = entry_id
        self.cause = cause
