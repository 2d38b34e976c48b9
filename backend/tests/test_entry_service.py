"""
Entry reconciliation tests.

Covers commit (re-pricing, all-or-nothing), delete (reversal round-trip,
missing batches), edit (reverse then re-apply), the season guard, frozen
batches of closed seasons, audit reasons, commit failure and retry, and the
best-effort hour meter.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from agrostock.extensions import db
from agrostock.models import AuditEvent, Entry, EntryLine, Machine, Season
from agrostock.services import batch_service, entry_service, season_service
from agrostock.services.entry_service import EntryDraft
from agrostock.services.errors import InsufficientStockError, NotFoundError, PartialCommitError, SeasonClosedError
from agrostock.services.fifo import load_breakdown
from agrostock.validation import ValidationError

from conftest import make_batch, make_draft, remaining


# =============================================================================
# COMMIT
# =============================================================================

def test_commit_prices_and_depletes(db_session, farm, season, stock_item, batches):
    b1, b2 = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)), actor="ana")

    assert entry.id is not None
    assert entry.total_cost == Decimal("80")
    line = entry.lines[0]
    assert line.unit_cost == Decimal("5.3333")
    assert line.total_cost == Decimal("80")

    parts = load_breakdown(line.consumption_breakdown)
    assert [(p.batch_id, p.quantity_consumed) for p in parts] == [(b1.id, Decimal("10")), (b2.id, Decimal("5"))]

    assert remaining(db_session, b1) == 0
    assert remaining(db_session, b2) == Decimal("5")

    event = db_session.query(AuditEvent).filter_by(entity_type="entry", entity_id=entry.id).one()
    assert event.event_type == "entry.committed"
    assert event.actor == "ana"


def test_commit_mixed_lines(db_session, farm, season, stock_item, service_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 4), (service_item, 2)))

    stock_line, service_line = entry.lines
    assert stock_line.total_cost == Decimal("20")
    assert service_line.total_cost == Decimal("240")
    assert service_line.consumption_breakdown is None
    assert entry.total_cost == Decimal("260")


def test_zero_quantity_lines_are_skipped(db_session, farm, season, stock_item, service_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 0), (service_item, 1)))
    assert [line.item_id for line in entry.lines] == [service_item.id]


def test_insufficient_stock_blocks_the_whole_entry(db_session, farm, season, stock_item, service_item, batches):
    b1, b2 = batches
    draft = make_draft(farm, season, (service_item, 1), (stock_item, 21))

    with pytest.raises(InsufficientStockError) as exc_info:
        entry_service.commit_entry(draft)

    assert exc_info.value.shortfall == Decimal("1")
    assert db_session.query(Entry).count() == 0
    assert db_session.query(EntryLine).count() == 0
    assert remaining(db_session, b1) == Decimal("10")
    assert remaining(db_session, b2) == Decimal("10")


def test_two_lines_of_one_product_see_each_other(db_session, farm, season, stock_item, batches):
    b1, b2 = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 8), (stock_item, 8)))

    first, second = entry.lines
    assert first.total_cost == Decimal("40")
    # 2 left in B1 at 5.00, then 6 from B2 at 6.00
    assert second.total_cost == Decimal("46")
    assert remaining(db_session, b1) == 0
    assert remaining(db_session, b2) == Decimal("4")


def test_two_lines_of_one_product_exceeding_stock(db_session, farm, season, stock_item, batches):
    with pytest.raises(InsufficientStockError):
        entry_service.commit_entry(make_draft(farm, season, (stock_item, 15), (stock_item, 6)))
    assert db_session.query(Entry).count() == 0


def test_commit_reprices_against_current_batches(db_session, farm, season, stock_item, batches, product):
    # Stock moved between preview and commit: a cheaper batch arrived earlier
    cheap = make_batch(db_session, product, "20", "1.00", date(2023, 6, 1))
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))

    assert entry.total_cost == Decimal("15")
    assert load_breakdown(entry.lines[0].consumption_breakdown)[0].batch_id == cheap.id


def test_season_from_another_property_is_refused(db_session, farm, other_farm, season, stock_item, batches):
    draft = EntryDraft(
        property_id=other_farm.id,
        season_id=season.id,
        executed_on=date(2024, 3, 1),
        service_name="Adubacao",
        lines=make_draft(farm, season, (stock_item, 1)).lines,
    )
    with pytest.raises(NotFoundError):
        entry_service.commit_entry(draft)


def test_item_from_another_property_is_refused(db_session, farm, other_farm, stock_item, batches):
    other_season = Season(property_id=other_farm.id, name="Safra vizinha")
    db_session.add(other_season)
    db_session.commit()

    with pytest.raises(ValidationError):
        entry_service.commit_entry(make_draft(other_farm, other_season, (stock_item, 1)))
    assert db_session.query(Entry).count() == 0


def test_closed_season_rejects_before_reading_batches(db_session, farm, closed_season, stock_item, monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("batches must not be read for a closed season")

    monkeypatch.setattr(batch_service, "list_available", _fail)

    with pytest.raises(SeasonClosedError):
        entry_service.commit_entry(make_draft(farm, closed_season, (stock_item, 1)))
    assert db_session.query(Entry).count() == 0


# =============================================================================
# DELETE
# =============================================================================

def test_commit_then_delete_restores_batches(db_session, farm, season, stock_item, batches):
    b1, b2 = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))
    entry_id = entry.id

    result = entry_service.delete_entry(entry_id, actor="ana")

    assert result["entry_id"] == entry_id
    assert result["skipped_batches"] == []
    assert len(result["restored"]) == 2
    assert remaining(db_session, b1) == Decimal("10")
    assert remaining(db_session, b2) == Decimal("10")
    assert db_session.get(Entry, entry_id) is None
    assert db_session.query(EntryLine).count() == 0

    events = [e.event_type for e in db_session.query(AuditEvent).filter_by(entity_id=entry_id, entity_type="entry")]
    assert events == ["entry.committed", "entry.deleted"]


@pytest.mark.parametrize("quantities", [(1,), (10,), (3, 7), (9.5, 0.25, 4)])
def test_round_trip_for_several_line_mixes(db_session, farm, season, stock_item, service_item, batches, quantities):
    b1, b2 = batches
    lines = [(stock_item, q) for q in quantities] + [(service_item, 1)]
    entry = entry_service.commit_entry(make_draft(farm, season, *lines))
    entry_service.delete_entry(entry.id)

    assert remaining(db_session, b1) == Decimal("10")
    assert remaining(db_session, b2) == Decimal("10")


def test_delete_skips_batches_that_no_longer_exist(db_session, farm, season, stock_item, batches, caplog):
    b1, _ = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 3)))
    line = entry.lines[0]
    line.consumption_breakdown = line.consumption_breakdown + [
        {"v": 1, "batch_id": "987654", "quantity_consumed": "1.0000", "unit_cost": "1.0000", "partial_cost": "1.0000"}
    ]
    db_session.commit()

    with caplog.at_level("WARNING", logger="agrostock.services.entry_service"):
        result = entry_service.delete_entry(entry.id)

    assert result["skipped_batches"] == ["987654"]
    assert "no longer exists" in caplog.text
    assert remaining(db_session, b1) == Decimal("10")


def test_delete_replays_legacy_breakdown(db_session, farm, season, stock_item, batches):
    b1, _ = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 4)))
    entry.lines[0].consumption_breakdown = [
        {"lote_id": str(b1.id), "quantidade_consumida": 4, "custo_unitario": 5, "custo_parcial": 20}
    ]
    db_session.commit()

    entry_service.delete_entry(entry.id)
    assert remaining(db_session, b1) == Decimal("10")


def test_delete_in_closed_season_is_refused(db_session, farm, season, stock_item, batches):
    b1, _ = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 4)))
    season.is_closed = True
    db_session.commit()

    with pytest.raises(SeasonClosedError):
        entry_service.delete_entry(entry.id)
    assert remaining(db_session, b1) == Decimal("6")
    assert db_session.get(Entry, entry.id) is not None


def test_delete_unknown_entry(db_session):
    with pytest.raises(NotFoundError):
        entry_service.delete_entry(5555)


def test_delete_scoped_to_property(db_session, farm, other_farm, season, stock_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 1)))
    with pytest.raises(NotFoundError):
        entry_service.delete_entry(entry.id, property_id=other_farm.id)


# =============================================================================
# EDIT
# =============================================================================

def test_edit_reverses_then_reapplies(db_session, farm, season, stock_item, service_item, batches):
    b1, b2 = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))
    entry_id = entry.id

    edited = entry_service.edit_entry(
        entry_id,
        make_draft(farm, season, (stock_item, 12), (service_item, 1), service_name="Adubacao corrigida"),
        actor="ana",
    )

    assert edited.id == entry_id
    assert edited.service_name == "Adubacao corrigida"
    # 10 @ 5.00 + 2 @ 6.00 + 120
    assert edited.total_cost == Decimal("182")
    assert remaining(db_session, b1) == 0
    assert remaining(db_session, b2) == Decimal("8")
    assert db_session.query(EntryLine).filter_by(entry_id=entry_id).count() == 2


def test_edit_can_use_the_stock_it_releases(db_session, farm, season, stock_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 20)))
    edited = entry_service.edit_entry(entry.id, make_draft(farm, season, (stock_item, 20)))
    assert edited.total_cost == Decimal("110")


def test_failed_edit_leaves_everything_untouched(db_session, farm, season, stock_item, batches):
    b1, b2 = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))
    entry_id = entry.id

    with pytest.raises(InsufficientStockError):
        entry_service.edit_entry(entry_id, make_draft(farm, season, (stock_item, 21)))

    db_session.expire_all()
    kept = db_session.get(Entry, entry_id)
    assert kept.total_cost == Decimal("80")
    assert len(kept.lines) == 1
    assert remaining(db_session, b1) == 0
    assert remaining(db_session, b2) == Decimal("5")


def test_edit_into_closed_season_is_refused(db_session, farm, season, closed_season, stock_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 1)))
    with pytest.raises(SeasonClosedError):
        entry_service.edit_entry(entry.id, make_draft(farm, closed_season, (stock_item, 1)))


def test_edit_cannot_move_property(db_session, farm, other_farm, season, stock_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 1)))
    draft = EntryDraft(
        property_id=other_farm.id,
        season_id=season.id,
        executed_on=date(2024, 3, 1),
        service_name="x",
    )
    with pytest.raises(ValidationError):
        entry_service.edit_entry(entry.id, draft)


# =============================================================================
# CLOSED-SEASON BATCHES
# =============================================================================

def test_open_season_entry_skips_closed_season_batches(db_session, farm, season, closed_season, product, stock_item):
    frozen = make_batch(db_session, product, "10", "4.00", date(2023, 6, 1), season_id=closed_season.id)
    current = make_batch(db_session, product, "10", "5.00", date(2024, 1, 1), season_id=season.id)

    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 3)))

    assert entry.total_cost == Decimal("15")
    assert remaining(db_session, frozen) == Decimal("10")
    assert remaining(db_session, current) == Decimal("7")


def test_closed_season_stock_alone_is_insufficient(db_session, farm, season, closed_season, product, stock_item):
    frozen = make_batch(db_session, product, "10", "4.00", date(2023, 6, 1), season_id=closed_season.id)

    with pytest.raises(InsufficientStockError):
        entry_service.commit_entry(make_draft(farm, season, (stock_item, 1)))

    assert remaining(db_session, frozen) == Decimal("10")
    assert db_session.query(Entry).count() == 0


def test_reversal_into_a_closed_season_batch_is_refused(db_session, farm, season, product, stock_item):
    previous = Season(property_id=farm.id, name="Safra 2023/24")
    db_session.add(previous)
    db_session.commit()
    previous_id = previous.id
    carried = make_batch(db_session, product, "10", "4.00", date(2023, 6, 1), season_id=previous_id)

    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 4)))
    entry_id = entry.id
    season_service.close_season(previous_id)

    with pytest.raises(SeasonClosedError):
        entry_service.delete_entry(entry_id)
    with pytest.raises(SeasonClosedError):
        entry_service.edit_entry(entry_id, make_draft(farm, season, (stock_item, 1)))

    assert remaining(db_session, carried) == Decimal("6")
    kept = db_session.get(Entry, entry_id)
    assert kept is not None
    assert kept.total_cost == Decimal("16")


# =============================================================================
# AUDIT REASON
# =============================================================================

def test_delete_and_edit_record_the_reason(db_session, farm, season, stock_item, batches):
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 3)))
    entry_id = entry.id

    entry_service.edit_entry(entry_id, make_draft(farm, season, (stock_item, 2)), reason="  dose corrigida ")
    entry_service.delete_entry(entry_id, actor="ana", reason="lancamento duplicado")

    notes = {
        e.event_type: e.note
        for e in db_session.query(AuditEvent).filter_by(entity_type="entry", entity_id=entry_id)
    }
    assert notes == {
        "entry.committed": None,
        "entry.edited": "dose corrigida",
        "entry.deleted": "lancamento duplicado",
    }


def test_overlong_reason_is_refused_before_any_write(db_session, farm, season, stock_item, batches):
    b1, _ = batches
    entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 3)))

    with pytest.raises(ValidationError):
        entry_service.delete_entry(entry.id, reason="x" * 256)

    assert remaining(db_session, b1) == Decimal("7")
    assert db_session.get(Entry, entry.id) is not None


# =============================================================================
# TRANSACTIONS
# =============================================================================

def test_failed_final_commit_reports_applied_batch_calls(db_session, farm, season, stock_item, batches, monkeypatch):
    b1, b2 = batches

    def _disk_error():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(db.session, "commit", _disk_error)

    with pytest.raises(PartialCommitError) as exc_info:
        entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))

    details = exc_info.value.details
    assert details["entry_id"] is not None
    assert [(call["action"], call["batch_id"], call["quantity"]) for call in details["applied"]] == [
        ("deplete", str(b1.id), "10.0000"),
        ("deplete", str(b2.id), "5.0000"),
    ]
    assert details["failed"][0]["action"] == "commit"
    assert "disk I/O error" in details["failed"][0]["error"]

    monkeypatch.undo()
    assert remaining(db_session, b1) == Decimal("10")
    assert remaining(db_session, b2) == Decimal("10")
    assert db_session.query(Entry).count() == 0


def test_stale_commit_is_retried_without_double_depletion(db_session, farm, season, stock_item, batches, monkeypatch, caplog):
    b1, b2 = batches
    real_finalize = entry_service._finalize
    attempts = []

    def _stale_once(entry_id, calls):
        attempts.append(entry_id)
        if len(attempts) == 1:
            raise StaleDataError("UPDATE statement on table 'batches' expected to update 1 row(s); 0 were matched.")
        return real_finalize(entry_id, calls)

    monkeypatch.setattr(entry_service, "_finalize", _stale_once)

    with caplog.at_level("WARNING", logger="agrostock.services.concurrency"):
        entry = entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))

    assert len(attempts) == 2
    assert entry.total_cost == Decimal("80")
    assert db_session.query(Entry).count() == 1
    assert remaining(db_session, b1) == 0
    assert remaining(db_session, b2) == Decimal("5")
    assert "Concurrent modification" in caplog.text


def test_lock_contention_gives_up_after_configured_attempts(app, db_session, farm, season, stock_item, batches, monkeypatch):
    b1, b2 = batches
    attempts = []

    def _locked(entry_id, calls):
        attempts.append(entry_id)
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(entry_service, "_finalize", _locked)

    with pytest.raises(OperationalError):
        entry_service.commit_entry(make_draft(farm, season, (stock_item, 15)))

    assert len(attempts) == app.config["RETRY_ATTEMPTS"]
    assert db_session.query(Entry).count() == 0
    assert remaining(db_session, b1) == Decimal("10")
    assert remaining(db_session, b2) == Decimal("10")


# =============================================================================
# HOUR METER
# =============================================================================

def hour_meter(session, machine) -> Decimal:
    session.expire_all()
    return Decimal(session.get(Machine, machine.id).hour_meter)


def test_machine_hours_bump_the_hour_meter(db_session, farm, season, machine, machine_item):
    entry = entry_service.commit_entry(make_draft(farm, season, (machine_item, "2.5")))
    assert entry.total_cost == Decimal("375")
    assert hour_meter(db_session, machine) == Decimal("1002.5")


def test_edit_bumps_the_hour_meter_by_the_new_hours(db_session, farm, season, machine, machine_item):
    entry = entry_service.commit_entry(make_draft(farm, season, (machine_item, 4)))
    assert hour_meter(db_session, machine) == Decimal("1004")

    # Same as deleting and committing again: the meter never goes back
    entry_service.edit_entry(entry.id, make_draft(farm, season, (machine_item, 1)))
    assert hour_meter(db_session, machine) == Decimal("1005")


def test_delete_leaves_the_hour_meter_alone(db_session, farm, season, machine, machine_item):
    entry = entry_service.commit_entry(make_draft(farm, season, (machine_item, 4)))
    entry_service.delete_entry(entry.id)
    assert hour_meter(db_session, machine) == Decimal("1004")


def test_hour_meter_failure_does_not_block_the_entry(db_session, farm, season, machine, machine_item, monkeypatch, caplog):
    def _boom(machine_id):
        raise OperationalError("UPDATE machines", {}, Exception("database is locked"))

    monkeypatch.setattr(entry_service, "_load_machine", _boom)

    with caplog.at_level("WARNING", logger="agrostock.services.entry_service"):
        entry = entry_service.commit_entry(make_draft(farm, season, (machine_item, 2)))

    assert db_session.get(Entry, entry.id) is not None
    assert hour_meter(db_session, machine) == Decimal("1000")
    assert "Could not update hour meter" in caplog.text


# =============================================================================
# DRAFT PARSING
# =============================================================================

def test_draft_from_payload(db_session):
    draft = EntryDraft.from_payload({
        "property_id": "1",
        "season_id": 2,
        "executed_on": "2024-03-01",
        "service_name": "  Pulverizacao ",
        "lines": [{"item_id": 3, "quantity": "1.23456"}],
    })
    assert draft.service_name == "Pulverizacao"
    assert draft.lines[0].quantity == Decimal("1.2346")
    assert draft.executed_on == date(2024, 3, 1)


@pytest.mark.parametrize("payload", [
    {"season_id": 1, "executed_on": "2024-03-01", "service_name": "x"},
    {"property_id": 1, "season_id": 1, "executed_on": "2024-03-01", "service_name": " "},
    {"property_id": 1, "season_id": 1, "executed_on": "not a date", "service_name": "x"},
    {"property_id": 1, "season_id": 1, "executed_on": "2024-03-01", "service_name": "x", "total_cost": 10},
    {"property_id": 1, "season_id": 1, "executed_on": "2024-03-01", "service_name": "x",
     "lines": [{"item_id": 1, "quantity": -1}]},
    {"property_id": 1, "season_id": 1, "executed_on": "2024-03-01", "service_name": "x",
     "lines": [{"item_id": 1, "quantity": 1, "unit_cost": 3}]},
])
def test_draft_rejects_bad_payloads(db_session, payload):
    with pytest.raises(ValidationError):
        EntryDraft.from_payload(payload)
