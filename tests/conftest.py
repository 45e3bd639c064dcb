# tests/conftest.py
import os

# Must be set before the app and its DatabaseManager are imported
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from formbuilder.app import app
from formbuilder.db.local_session import DatabaseManager
from formbuilder.schemas.form import Column, FormField, Tab
from formbuilder.services.option_loader import option_loaders


@pytest.fixture
def database():
    """Fresh in-memory tables for every test"""
    manager = DatabaseManager()
    manager.reset_database()
    option_loaders.clear()
    return manager


@pytest.fixture
def db_session(database):
    """Creates a test database session"""
    sessions = database.get_session()
    db = next(sessions)
    yield db
    sessions.close()


@pytest.fixture
def client(database):
    """Test client for the FastAPI app"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def invoice_table():
    """A lines table with a calculated Total column and one empty row"""
    return FormField(
        id="items",
        field_name="Items",
        field_type="table",
        columns=[
            Column(id="c-qty", name="Quantity", type="number"),
            Column(id="c-price", name="Price", type="number"),
            Column(
                id="c-total",
                name="Total",
                type="number",
                is_calculated=True,
                calculation_formula="Quantity * Price",
            ),
        ],
        row_count=5,
    )


@pytest.fixture
def lines_forest(invoice_table):
    return [Tab(id="lines-tab", name="Items", fields=[invoice_table])]
