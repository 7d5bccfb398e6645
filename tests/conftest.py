"""
conftest.py
===========
Shared fixtures: every test gets its own temporary SQLite database so
tests never touch the real data file or each other.
"""

import os
import tempfile

import pytest

from clinic_checkin import db as db_module
from clinic_checkin.db import SessionLocal, configure_database, init_db
from clinic_checkin.models import Base, Doctor, Patient
from clinic_checkin.session_manager import CheckInService


@pytest.fixture
def database():
    """
    Creates a temporary SQLite database and points the application at it.
    """
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    configure_database(f"sqlite:///{db_path}")
    init_db(Base)

    yield db_path

    # Clean up temporary database after the test
    db_module.engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def db(database):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service(db):
    return CheckInService(db)


@pytest.fixture
def patient(db):
    p = Patient(id=109, name="Maria Santos", age=34, contact_number="09171234567")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def doctor(db):
    d = Doctor(id=3, name="Dr. Clara", specialty="Family Medicine")
    db.add(d)
    db.commit()
    return d


@pytest.fixture
def vitals():
    """Temperature, heart rate and blood pressure of a healthy adult."""
    return {
        "temperature": 37.0,
        "heart_rate": 80,
        "systolic_bp": 120,
        "diastolic_bp": 80,
    }
