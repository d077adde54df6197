from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from kiosk_api.audit import DatabaseAuditSink
from kiosk_api.auth import hash_pin
from kiosk_api.config import Settings, get_settings
from kiosk_api.database import get_db
from kiosk_api.main import app, get_audit_sink
from kiosk_api.models import Badge, Base, Department, Employee, Visit

UTC = datetime.timezone.utc


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'kiosk.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(cron_secret=None, bcrypt_rounds=4)


@pytest.fixture
def client(session_factory, settings):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_audit_sink] = lambda: DatabaseAuditSink(session_factory)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def staff(db):
    """Reception department with one user, one department admin and one disabled user."""
    reception = Department(name="Reception")
    db.add(reception)
    db.flush()
    people = {
        "user": Employee(name="Anna Kowalska", role="user", pin_hash=hash_pin("1234", rounds=4),
                         department_id=reception.id),
        "manager": Employee(name="Jan Nowak", role="department_admin", pin_hash=hash_pin("5678", rounds=4),
                            department_id=reception.id),
        "disabled": Employee(name="Ewa Lis", role="user", pin_hash=hash_pin("9999", rounds=4),
                             department_id=reception.id, is_active=False),
    }
    db.add_all(people.values())
    db.commit()
    return people


@pytest.fixture
def add_visit(db, staff):
    counter = {"n": 0}

    def _add(entry_time, exit_time=None, **extra):
        counter["n"] += 1
        badge = Badge(badge_number=f"B{counter['n']:03d}")
        db.add(badge)
        db.flush()
        visit = Visit(
            visitor_name=extra.pop("visitor_name", f"Visitor {counter['n']}"),
            employee_id=staff["user"].id,
            badge_id=badge.id,
            entry_time=entry_time,
            exit_time=exit_time,
            is_system_exit=False,
            **extra,
        )
        db.add(visit)
        db.commit()
        return visit.id

    return _add
