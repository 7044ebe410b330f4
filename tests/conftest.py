"""
Shared pytest fixtures for the GateFlow test suite.

Every test runs against a fresh in-memory SQLite schema.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_DISABLED"] = "true"

import pytest
from fastapi.testclient import TestClient

import models
from database import Base, SessionLocal, engine


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def event(db):
    """Event with two configured sectors."""
    ev = models.Event(name="Summer Fest", sector_names=["Pista", "VIP"], hidden_sectors=[])
    db.add(ev)
    db.commit()
    db.refresh(ev)
    return ev


@pytest.fixture
def add_tickets(db, event):
    """Insert tickets given as (code, sector, status[, used_at]) tuples."""
    def _add(*rows, source="api_import", details=None):
        for row in rows:
            code, sector, status = row[:3]
            used_at = row[3] if len(row) > 3 else None
            db.add(models.Ticket(
                event_id=event.id, id=code, sector=sector, status=status,
                used_at=used_at, source=source, details=details,
            ))
        db.commit()
    return _add


@pytest.fixture
def client(tmp_path, monkeypatch):
    import main
    monkeypatch.setattr(main, "APP_STATE_FILE", str(tmp_path / "app_state.json"))
    with TestClient(main.app) as c:
        yield c
