"""
Cost preview tests: read-only pricing for stock, service and machine-hour items.
"""

from datetime import date
from decimal import Decimal

import pytest

from agrostock.models import Batch
from agrostock.services.preview_service import preview
from agrostock.validation import ValidationError

from conftest import make_batch


def test_stock_preview_matches_fifo(db_session, stock_item, batches):
    result = preview(stock_item.id, "15")

    assert result.item_type == "stock"
    assert result.total_cost == Decimal("80")
    assert result.unit_cost == Decimal("5.3333")
    assert result.sufficient is True
    assert [cl.quantity_consumed for cl in result.breakdown] == [Decimal("10"), Decimal("5")]


def test_stock_preview_never_writes(db_session, stock_item, batches):
    preview(stock_item.id, 15)
    db_session.expire_all()
    assert [b.remaining_quantity for b in db_session.query(Batch).order_by(Batch.id)] == [
        Decimal("10"),
        Decimal("10"),
    ]


def test_stock_preview_reports_shortfall(db_session, stock_item, batches):
    result = preview(stock_item.id, 25)

    assert result.sufficient is False
    assert result.shortfall == Decimal("5")
    assert result.total_available == Decimal("20")
    data = result.to_dict()
    assert data["sufficient"] is False
    assert Decimal(data["shortfall"]) == Decimal("5")


def test_stock_preview_leaves_out_closed_season_batches(db_session, stock_item, product, closed_season, batches):
    make_batch(db_session, product, "50", "1.00", date(2023, 6, 1), season_id=closed_season.id)

    result = preview(stock_item.id, "15")
    assert result.total_available == Decimal("20")
    assert result.total_cost == Decimal("80")


def test_service_preview_is_rate_times_quantity(db_session, service_item):
    result = preview(service_item.id, "2.5")

    assert result.unit_cost == Decimal("120")
    assert result.total_cost == Decimal("300")
    assert result.breakdown == ()
    assert result.total_available is None
    assert result.sufficient is True


def test_machine_hour_uses_machine_rate(db_session, machine_item):
    result = preview(machine_item.id, 3)
    assert result.unit_cost == Decimal("150")
    assert result.total_cost == Decimal("450")


def test_machine_hour_falls_back_to_item_rate(db_session, machine_item, machine):
    machine.hourly_rate = None
    db_session.commit()

    result = preview(machine_item.id, 3)
    assert result.unit_cost == Decimal("90")
    assert result.total_cost == Decimal("270")


@pytest.mark.parametrize("quantity", [None, "", 0, "0", -2])
def test_nothing_to_preview(db_session, stock_item, quantity):
    assert preview(stock_item.id, quantity) is None


def test_no_item_or_unknown_item(db_session):
    assert preview(None, 5) is None
    assert preview(999999, 5) is None


def test_garbage_quantity_is_a_validation_error(db_session, stock_item):
    with pytest.raises(ValidationError):
        preview(stock_item.id, "abc")
