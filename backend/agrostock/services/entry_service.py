# Overview: Entry reconciliation engine; commits, reverses and re-applies entries against batches.

"""
Entry Reconciliation

STATE MACHINE (per entry):
    DRAFT -> COMMITTING -> COMMITTED | COMMIT_FAILED
    COMMITTED -> REVERSING -> REVERSED          (delete)
    COMMITTED -> REVERSING -> COMMITTING -> ...  (edit: reverse, then re-apply)

    DRAFT lives on the client. Only COMMITTED is persisted; the transient
    states exist inside one DB transaction and show up in the logs.

COMMIT ORDER (all inside one transaction, one commit):
    1. season guard (fresh read) - before any batch is read
    2. re-price every line with quantity > 0 against live, locked batches;
       client-side previews are never trusted
    3. any shortfall aborts the whole entry (InsufficientStockError)
    4. persist header and lines with unit/total cost and breakdown
    5. deplete every batch named by every breakdown
    6. best-effort hour meter update for machine-hour lines (savepoint)
    7. audit event, commit

REVERSAL replays each line's stored breakdown in reverse through
batch_service.restore(). A batch that no longer exists is skipped with a
warning so the entry can still be removed.

Several lines drawing on the same product are planned sequentially against
in-memory batch snapshots, so the second line sees what the first consumed.

Every failure rolls the session back before propagating, so batch levels are
either fully updated for the entry or untouched. If the final commit itself
fails for a non-retryable reason, PartialCommitError names the batch calls
that had been flushed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Batch, Entry, EntryLine, Item, Machine, ENTRY_STATUS_COMMITTED
from ..numeric import ZERO, decimal_str, quantize_cost, quantize_quantity
from ..validation import (
    ValidationError,
    coerce_date,
    coerce_decimal,
    coerce_int,
    enforce_rules_entry_line,
)
from . import batch_service
from .catalog_service import ItemResolution, resolution_for
from .concurrency import lock_for_update, run_with_retry
from .errors import BatchNotFound, EngineError, InsufficientStockError, NotFoundError, PartialCommitError
from .fifo import BatchSnapshot, dump_breakdown, load_breakdown
from .ledger_service import append_audit_event
from .preview_service import PreviewResult, price_item
from .season_service import ensure_season_open

logger = logging.getLogger(__name__)

ENTRY_FIELDS = {"property_id", "season_id", "executed_on", "service_name", "plot_id", "note", "lines"}
LINE_FIELDS = {"item_id", "quantity"}


# =============================================================================
# DRAFTS
# =============================================================================

@dataclass(frozen=True)
class DraftLine:
    item_id: int
    quantity: Decimal


@dataclass(frozen=True)
class EntryDraft:
    """Client-side entry as submitted for commit or edit."""
    property_id: int
    season_id: int
    executed_on: date
    service_name: str
    lines: tuple[DraftLine, ...] = ()
    plot_id: Optional[int] = None
    note: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "EntryDraft":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        for key in payload:
            if key not in ENTRY_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        missing = sorted(k for k in ("property_id", "season_id", "executed_on", "service_name") if payload.get(k) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        service_name = str(payload["service_name"]).strip()
        if not service_name:
            raise ValidationError("service_name cannot be blank")
        if len(service_name) > 255:
            raise ValidationError("service_name exceeds max length 255")

        raw_lines = payload.get("lines") or []
        if not isinstance(raw_lines, list):
            raise ValidationError("lines must be a list")

        lines = []
        for index, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                raise ValidationError(f"lines[{index}] must be an object")
            for key in raw:
                if key not in LINE_FIELDS:
                    raise ValidationError(f"lines[{index}]: field not allowed: {key}")
            line = {
                "item_id": coerce_int(f"lines[{index}].item_id", raw["item_id"]) if raw.get("item_id") is not None else None,
                "quantity": coerce_decimal(f"lines[{index}].quantity", raw["quantity"]) if raw.get("quantity") is not None else None,
            }
            enforce_rules_entry_line(index, line)
            lines.append(DraftLine(item_id=line["item_id"], quantity=quantize_quantity(line["quantity"])))

        note = payload.get("note")
        plot_id = payload.get("plot_id")

        return cls(
            property_id=coerce_int("property_id", payload["property_id"]),
            season_id=coerce_int("season_id", payload["season_id"]),
            executed_on=coerce_date("executed_on", payload["executed_on"]),
            service_name=service_name,
            lines=tuple(lines),
            plot_id=coerce_int("plot_id", plot_id) if plot_id is not None else None,
            note=str(note).strip() if note is not None else None,
        )

    def validate(self) -> None:
        if not self.service_name or not self.service_name.strip():
            raise ValidationError("service_name cannot be blank")
        for index, line in enumerate(self.lines):
            enforce_rules_entry_line(index, {"item_id": line.item_id, "quantity": line.quantity})


@dataclass
class PlannedLine:
    draft: DraftLine
    resolution: ItemResolution
    pricing: PreviewResult


@dataclass
class _BatchCalls:
    """Batch mutations flushed so far for one entry, for failure reports."""
    applied: list = field(default_factory=list)

    def record(self, action: str, batch_id, quantity: Decimal) -> None:
        self.applied.append({"action": action, "batch_id": str(batch_id), "quantity": decimal_str(quantity)})


# =============================================================================
# PLANNING
# =============================================================================

def _plan_lines(draft: EntryDraft) -> list[PlannedLine]:
    """
    Authoritative pricing of every line against live batch state.

    Raises InsufficientStockError on the first stock line that cannot be
    covered; nothing has been written at that point.
    """
    snapshots: dict[int, list[BatchSnapshot]] = {}
    planned: list[PlannedLine] = []

    for index, line in enumerate(draft.lines):
        if line.quantity <= 0:
            continue

        item = db.session.query(Item).filter_by(id=line.item_id).first()
        if item is None or item.property_id != draft.property_id:
            raise ValidationError(f"lines[{index}].item_id {line.item_id} not found")

        resolution = resolution_for(item)

        if resolution.is_stock:
            pid = resolution.product_id
            if pid not in snapshots:
                snapshots[pid] = [
                    BatchSnapshot.from_batch(b)
                    for b in batch_service.list_available(pid, lock=True)
                ]
            pricing = price_item(resolution, line.quantity, snapshots[pid])
            if not pricing.sufficient:
                logger.info(
                    "Item %s short by %s (requested %s, available %s)",
                    line.item_id, pricing.shortfall, pricing.quantity, pricing.total_available,
                )
                raise InsufficientStockError(
                    line.item_id, pricing.quantity, pricing.total_available, pricing.shortfall
                )
            snapshots[pid] = _consume_snapshots(snapshots[pid], pricing)
        else:
            pricing = price_item(resolution, line.quantity)

        planned.append(PlannedLine(draft=line, resolution=resolution, pricing=pricing))

    return planned


def _consume_snapshots(snapshots: list[BatchSnapshot], pricing: PreviewResult) -> list[BatchSnapshot]:
    taken = {cl.batch_id: cl.quantity_consumed for cl in pricing.breakdown}
    return [s.consumed(taken[s.id]) if s.id in taken else s for s in snapshots]


# =============================================================================
# APPLY / REVERSE
# =============================================================================

def _apply_lines(entry: Entry, planned: list[PlannedLine], calls: _BatchCalls) -> None:
    total = ZERO
    for p in planned:
        entry.lines.append(
            EntryLine(
                item_id=p.draft.item_id,
                quantity=p.pricing.quantity,
                unit_cost=p.pricing.unit_cost,
                total_cost=p.pricing.total_cost,
                consumption_breakdown=dump_breakdown(p.pricing.breakdown) if p.resolution.is_stock else None,
            )
        )
        total += p.pricing.total_cost
    entry.total_cost = quantize_cost(total)

    # Header and lines must be persisted before any batch moves
    db.session.flush()

    for p in planned:
        for cl in p.pricing.breakdown:
            try:
                batch_service.deplete(cl.batch_id, cl.quantity_consumed)
            except EngineError:
                logger.error(
                    "Entry %s: depletion of batch %s failed after %d batch calls: %s",
                    entry.id, cl.batch_id, len(calls.applied), calls.applied,
                )
                raise
            calls.record("deplete", cl.batch_id, cl.quantity_consumed)


def _guard_batch_seasons(batch_ids) -> None:
    """Refuse to touch batches of a closed season; runs before any restore."""
    if not batch_ids:
        return
    season_ids = {
        sid for (sid,) in db.session.query(Batch.season_id).filter(Batch.id.in_(batch_ids))
        if sid is not None
    }
    for season_id in sorted(season_ids):
        ensure_season_open(season_id)


def _reverse_lines(entry: Entry, calls: _BatchCalls) -> list[str]:
    """Restore every batch named by the entry's breakdowns; returns skipped batch ids."""
    parsed = []
    for line in entry.lines:
        try:
            parsed.append(load_breakdown(line.consumption_breakdown))
        except ValueError as exc:
            raise EngineError(
                f"Entry line {line.id} has an unreadable consumption breakdown",
                {"entry_id": entry.id, "line_id": line.id, "reason": str(exc)},
            )

    _guard_batch_seasons({
        cl.batch_id for breakdown in parsed for cl in breakdown if isinstance(cl.batch_id, int)
    })

    skipped: list[str] = []
    for breakdown in parsed:
        for cl in reversed(breakdown):
            if cl.quantity_consumed <= 0:
                continue
            try:
                clamped = batch_service.restore(cl.batch_id, cl.quantity_consumed)
            except BatchNotFound:
                logger.warning(
                    "Entry %s: batch %s no longer exists; skipping restoration of %s",
                    entry.id, cl.batch_id, cl.quantity_consumed,
                )
                skipped.append(str(cl.batch_id))
                continue
            if clamped:
                logger.warning("Entry %s: restoration of batch %s hit the original-quantity clamp", entry.id, cl.batch_id)
            calls.record("restore", cl.batch_id, cl.quantity_consumed)
    return skipped


def _machine_hours(entry_lines) -> dict[int, Decimal]:
    hours: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for machine_id, quantity in entry_lines:
        if machine_id is not None:
            hours[machine_id] += Decimal(quantity)
    return dict(hours)


def _load_machine(machine_id: int) -> Machine | None:
    return lock_for_update(db.session.query(Machine).filter_by(id=machine_id)).first()


def _bump_hour_meters(hours: dict[int, Decimal]) -> None:
    """
    Best-effort hour meter update; failures are logged and never abort the entry.

    Runs in a savepoint so a failed update is rolled back on its own.
    """
    for machine_id, delta in hours.items():
        if delta == 0:
            continue
        try:
            with db.session.begin_nested():
                machine = _load_machine(machine_id)
                if machine is None:
                    logger.warning("Machine %s not found; hour meter not updated", machine_id)
                    continue
                machine.hour_meter = Decimal(machine.hour_meter or 0) + delta
        except SQLAlchemyError:
            logger.warning("Could not update hour meter for machine %s", machine_id, exc_info=True)


def _finalize(entry_id, calls: _BatchCalls) -> None:
    try:
        db.session.commit()
    except (OperationalError, StaleDataError):
        # Retryable: run_with_retry rolls back and re-plans against fresh state
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Entry %s: commit failed after batch calls %s; rolled back, verify batch levels",
            entry_id, calls.applied,
        )
        raise PartialCommitError(entry_id, calls.applied, [{"action": "commit", "error": str(exc)}], cause=exc) from exc


def _load_entry(entry_id: int, *, property_id: int | None = None) -> Entry:
    entry = lock_for_update(db.session.query(Entry).filter_by(id=entry_id)).first()
    if entry is None or (property_id is not None and entry.property_id != property_id):
        raise NotFoundError("entry", entry_id)
    return entry


def _clean_reason(reason) -> str | None:
    if reason is None:
        return None
    reason = str(reason).strip()
    if len(reason) > 255:
        raise ValidationError("reason exceeds max length 255")
    return reason or None


def _run(op, *, action: str, entry_ref):
    try:
        return run_with_retry(op)
    except Exception as exc:
        db.session.rollback()
        level = logging.INFO if isinstance(exc, (ValidationError, EngineError)) else logging.ERROR
        logger.log(level, "Entry %s %s failed: %s", entry_ref, action, exc)
        raise


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def commit_entry(draft: EntryDraft, *, actor: str | None = None) -> Entry:
    """
    Commit a draft: re-price, deplete batches and persist, all or nothing.

    Raises SeasonClosedError (before any batch is read), ValidationError,
    InsufficientStockError, InvariantViolation or PartialCommitError.
    """
    draft.validate()

    def _op():
        ensure_season_open(draft.season_id, property_id=draft.property_id)
        logger.debug("Entry draft for season %s COMMITTING (%d lines)", draft.season_id, len(draft.lines))

        planned = _plan_lines(draft)

        entry = Entry(
            property_id=draft.property_id,
            season_id=draft.season_id,
            service_name=draft.service_name,
            plot_id=draft.plot_id,
            executed_on=draft.executed_on,
            note=draft.note,
            status=ENTRY_STATUS_COMMITTED,
        )
        db.session.add(entry)

        calls = _BatchCalls()
        _apply_lines(entry, planned, calls)
        _bump_hour_meters(_machine_hours((p.resolution.machine_id, p.pricing.quantity) for p in planned))

        append_audit_event(
            event_type="entry.committed",
            entity_type="entry",
            entity_id=entry.id,
            property_id=entry.property_id,
            season_id=entry.season_id,
            actor=actor,
            payload={"after": entry.to_dict()},
        )
        _finalize(entry.id, calls)
        logger.info("Entry %s COMMITTED: total %s, %d batch calls", entry.id, entry.total_cost, len(calls.applied))
        return entry

    return _run(_op, action="commit", entry_ref="(new)")


def delete_entry(
    entry_id: int,
    *,
    property_id: int | None = None,
    actor: str | None = None,
    reason: str | None = None,
) -> dict:
    """
    Reverse an entry's batch consumption and delete it.

    The season guard runs before any restoration. Returns a summary with
    the batches that were restored and the ones skipped because they no
    longer exist. An optional reason is kept on the audit event.
    """
    reason = _clean_reason(reason)

    def _op():
        entry = _load_entry(entry_id, property_id=property_id)
        ensure_season_open(entry.season_id)
        logger.debug("Entry %s REVERSING", entry.id)

        before = entry.to_dict()
        calls = _BatchCalls()
        skipped = _reverse_lines(entry, calls)

        entry.lines.clear()
        db.session.flush()
        db.session.delete(entry)

        append_audit_event(
            event_type="entry.deleted",
            entity_type="entry",
            entity_id=entry_id,
            property_id=before["property_id"],
            season_id=before["season_id"],
            actor=actor,
            note=reason,
            payload={"before": before, "skipped_batches": skipped},
        )
        _finalize(entry_id, calls)
        logger.info("Entry %s REVERSED: %d batch calls, %d skipped", entry_id, len(calls.applied), len(skipped))
        return {"entry_id": entry_id, "restored": calls.applied, "skipped_batches": skipped}

    return _run(_op, action="delete", entry_ref=entry_id)


def edit_entry(entry_id: int, draft: EntryDraft, *, actor: str | None = None, reason: str | None = None) -> Entry:
    """
    Reverse the entry's current lines, then commit the draft's lines in
    their place, in one transaction. The header row and id are kept.

    If re-allocation fails the whole transaction rolls back: the entry and
    every batch keep their pre-edit state. The meter of machine-hour lines is
    bumped by the new hours, as on commit; the old hours are not taken back.
    """
    draft.validate()
    reason = _clean_reason(reason)

    def _op():
        entry = _load_entry(entry_id)
        if draft.property_id != entry.property_id:
            raise ValidationError("an entry cannot move to another property")

        ensure_season_open(entry.season_id)
        if draft.season_id != entry.season_id:
            ensure_season_open(draft.season_id, property_id=entry.property_id)

        logger.debug("Entry %s REVERSING for edit", entry.id)
        before = entry.to_dict()
        calls = _BatchCalls()
        skipped = _reverse_lines(entry, calls)
        entry.lines.clear()
        db.session.flush()

        logger.debug("Entry %s COMMITTING edited lines", entry.id)
        planned = _plan_lines(draft)

        entry.season_id = draft.season_id
        entry.service_name = draft.service_name
        entry.plot_id = draft.plot_id
        entry.executed_on = draft.executed_on
        entry.note = draft.note

        _apply_lines(entry, planned, calls)

        # Same as a fresh commit: the meter only moves forward
        _bump_hour_meters(_machine_hours((p.resolution.machine_id, p.pricing.quantity) for p in planned))

        append_audit_event(
            event_type="entry.edited",
            entity_type="entry",
            entity_id=entry.id,
            property_id=entry.property_id,
            season_id=entry.season_id,
            actor=actor,
            note=reason,
            payload={"before": before, "after": entry.to_dict(), "skipped_batches": skipped},
        )
        _finalize(entry.id, calls)
        logger.info("Entry %s COMMITTED after edit: total %s", entry.id, entry.total_cost)
        return entry

    return _run(_op, action="edit", entry_ref=entry_id)


def get_entry(entry_id: int) -> Entry:
    entry = db.session.query(Entry).filter_by(id=entry_id).first()
    if entry is None:
        raise NotFoundError("entry", entry_id)
    return entry


def list_entries(season_id: int, *, limit: int = 200) -> list[Entry]:
    return (
        db.session.query(Entry)
        .filter_by(season_id=season_id)
        .order_by(Entry.executed_on.desc(), Entry.id.desc())
        .limit(limit)
        .all()
    )
