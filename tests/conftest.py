"""Pytest fixtures and factories shared by the test suite.

Factory Functions:
    - make_unit(**overrides) -> dict      raw unit object as the hub sends it
    - unit_changed(**overrides) -> str    UNIT_CHANGED event carrying make_unit()
"""
import json
import os

# keep the module-level engine away from the real data directory
os.environ.setdefault("DB_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from twbridge.db import Base
from twbridge import models  # noqa: F401  (registers tables on Base)
from twbridge.state import Catalog


def make_unit(
    id: str = "7",
    name: str = "Lamp",
    type: str = "Switch",
    status: str = "ALIVE",
    **overrides
) -> dict:
    """
    Factory for a unit object in the hub's wire format.

    Example:
        unit = make_unit(type="shutter", currStatus=40)
    """
    unit = {"id": id, "name": name, "type": type, "status": status}
    unit.update(overrides)
    return unit


def unit_changed(**overrides) -> str:
    return json.dumps({"type": "UNIT_CHANGED", "unit": make_unit(**overrides)})


@pytest.fixture
def catalog():
    """Catalog backed by a private in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield Catalog(session_factory, engine)
    engine.dispose()
