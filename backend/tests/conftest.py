"""
Pytest fixtures for agrostock backend tests.

Provides test database setup, farm/catalog fixtures and test client.
"""

from datetime import date
from decimal import Decimal

import pytest
from agrostock import create_app
from agrostock.extensions import db
from agrostock.models import (
    Batch,
    Item,
    ITEM_TYPE_MACHINE_HOUR,
    ITEM_TYPE_SERVICE,
    ITEM_TYPE_STOCK,
    Machine,
    Product,
    Property,
    Season,
)
from agrostock.services.entry_service import DraftLine, EntryDraft


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session()

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def farm(db_session):
    """Create the main property."""
    prop = Property(name="Fazenda Boa Vista")
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture(scope='function')
def other_farm(db_session):
    """Create a second property for scoping checks."""
    prop = Property(name="Sitio Santa Luzia")
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture(scope='function')
def season(db_session, farm):
    """Create an open season on the main property."""
    s = Season(property_id=farm.id, name="Safra 2024/25")
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def closed_season(db_session, farm):
    """Create a closed season on the main property."""
    s = Season(property_id=farm.id, name="Safra 2023/24", is_closed=True)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def product(db_session, farm):
    """Create a stock product (fertilizer)."""
    p = Product(property_id=farm.id, name="Ureia", unit="kg", minimum_level=Decimal("5"))
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def batches(db_session, product, season):
    """
    Two batches of the product:
    B1 received 2024-01-01, 10 @ 5.00
    B2 received 2024-02-01, 10 @ 6.00
    """
    b1 = make_batch(db_session, product, "10", "5.00", date(2024, 1, 1), season_id=season.id)
    b2 = make_batch(db_session, product, "10", "6.00", date(2024, 2, 1), season_id=season.id)
    return b1, b2


@pytest.fixture(scope='function')
def stock_item(db_session, farm, product):
    item = Item(property_id=farm.id, name="Ureia (kg)", item_type=ITEM_TYPE_STOCK, product_id=product.id, unit="kg")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def service_item(db_session, farm):
    item = Item(
        property_id=farm.id,
        name="Diaria de trabalhador",
        item_type=ITEM_TYPE_SERVICE,
        default_rate=Decimal("120.00"),
        unit="dia",
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def machine(db_session, farm):
    m = Machine(property_id=farm.id, name="Trator MF 4275", hourly_rate=Decimal("150.00"), hour_meter=Decimal("1000"))
    db_session.add(m)
    db_session.commit()
    return m


@pytest.fixture(scope='function')
def machine_item(db_session, farm, machine):
    item = Item(
        property_id=farm.id,
        name="Hora trator",
        item_type=ITEM_TYPE_MACHINE_HOUR,
        machine_id=machine.id,
        default_rate=Decimal("90.00"),
        unit="h",
    )
    db_session.add(item)
    db_session.commit()
    return item


def make_batch(session, product, quantity, unit_cost, received_at, season_id=None, **extra) -> Batch:
    """Helper to insert a batch directly (remaining = original)."""
    batch = Batch(
        product_id=product.id,
        season_id=season_id,
        original_quantity=Decimal(quantity),
        remaining_quantity=Decimal(quantity),
        unit_cost=Decimal(unit_cost),
        received_at=received_at,
        **extra,
    )
    session.add(batch)
    session.commit()
    return batch


def make_draft(farm, season, *lines, service_name="Adubacao de cobertura", executed_on=date(2024, 3, 1)) -> EntryDraft:
    """Helper to build a draft from (item, quantity) pairs."""
    return EntryDraft(
        property_id=farm.id,
        season_id=season.id,
        executed_on=executed_on,
        service_name=service_name,
        lines=tuple(DraftLine(item_id=item.id, quantity=Decimal(str(qty))) for item, qty in lines),
    )


def remaining(session, batch) -> Decimal:
    """Fresh read of a batch's remaining quantity."""
    session.expire_all()
    return Decimal(session.get(Batch, batch.id).remaining_quantity)
