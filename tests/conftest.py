# tests/conftest.py
import os

# Before any stock_ledger import: the module-level engine must not touch a file
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WEBHOOK_URLS"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.database import get_db, init_db
from stock_ledger.main import app
from stock_ledger.schemas.product import ProductCreate, SupplierCreate
from stock_ledger.services import registry, transaction_service


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# --- Factories ---

@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {"sku": f"SKU-{counter['n']:03d}", "name": f"Product {counter['n']}"}
        data.update(overrides)
        return registry.create_product(db, ProductCreate(**data))

    return _make


@pytest.fixture
def make_supplier(db):
    def _make(name="Acme Supply"):
        return registry.create_supplier(db, SupplierCreate(name=name))

    return _make


@pytest.fixture
def supplier(make_supplier):
    return make_supplier()


@pytest.fixture
def stock_in(db, supplier):
    """Receive ``quantity`` of a product at a flat unit cost."""

    def _stock_in(product_id, quantity, unit_cost=1.0, **extra):
        return transaction_service.create_transaction(db, {
            "type": "IN",
            "supplier_id": supplier.id,
            "items": [{"product_id": product_id, "quantity": quantity, "unit_cost": unit_cost}],
            **extra,
        })

    return _stock_in


@pytest.fixture
def stock_out(db):
    def _stock_out(product_id, quantity, unit_price=2.0, **extra):
        return transaction_service.create_transaction(db, {
            "type": "OUT",
            "items": [{"product_id": product_id, "quantity": quantity, "unit_price": unit_price}],
            **extra,
        })

    return _stock_out


@pytest.fixture
def adjust(db):
    def _adjust(product_id, delta, **extra):
        return transaction_service.create_transaction(db, {
            "type": "ADJUST",
            "items": [{"product_id": product_id, "quantity": delta}],
            **extra,
        })

    return _adjust
