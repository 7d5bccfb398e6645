"""
models.py
=========
SQLAlchemy ORM models for the clinic check-in backend.
Contains tables for:
 - Patient
 - Doctor
 - CheckInSession
 - VitalSignsRecord
 - AuditLog
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey, Enum, Boolean, Float, JSON,
    Index, text,
)
from sqlalchemy.orm import declarative_base, relationship
import datetime
import enum

# SQLAlchemy Base class
Base = declarative_base()


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# ENUM DEFINITIONS
# ---------------------------------------------------------------------------

class SessionStatus(str, enum.Enum):
    """Defines the statuses a clinic visit moves through."""
    checked_in = "checked-in"
    waiting = "waiting"
    vitals_collected = "vitals-collected"
    doctor_notified = "doctor-notified"
    in_progress = "in-progress"
    completed = "completed"
    vaccination_completed = "vaccination-completed"
    cancelled = "cancelled"


class Priority(str, enum.Enum):
    """Front-desk priority given at check-in."""
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class CheckInMethod(str, enum.Enum):
    walk_in = "walk-in"
    qr_scan = "qr-scan"
    staff_assisted = "staff-assisted"


class ServiceType(str, enum.Enum):
    """Services a patient can check in for."""
    consultation = "consultation"
    general_checkup = "general-checkup"
    dental_consultation = "dental-consultation"
    dental_procedure = "dental-procedure"
    dental_fluoride = "dental-fluoride"
    follow_up = "follow-up"
    out_patient = "out-patient"
    parental_consultation = "parental-consultation"
    vaccination_bcg = "vaccination-bcg"
    vaccination_hepatitis_b = "vaccination-hepatitis-b"
    vaccination_polio = "vaccination-polio"
    vaccination_dtap = "vaccination-dtap"
    vaccination_mmr = "vaccination-mmr"
    vaccination_varicella = "vaccination-varicella"
    vaccination_pneumococcal = "vaccination-pneumococcal"
    vaccination_hepatitis_a = "vaccination-hepatitis-a"
    vaccination_influenza = "vaccination-influenza"
    vaccination_rabies = "vaccination-rabies"

    @property
    def is_vaccination(self) -> bool:
        return self.value.startswith("vaccination-")


def _enum_column(enum_cls, name: str, **kwargs) -> Column:
    # Persist the dashed values ("checked-in"), not the member names
    return Column(
        Enum(
            enum_cls,
            name=name,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# TABLE DEFINITIONS
# ---------------------------------------------------------------------------

class Patient(Base):
    """Patient directory entry (read-only for the check-in lifecycle)."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    age = Column(Integer)
    contact_number = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Doctor(Base):
    """Stores doctor profile and push notification key."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    specialty = Column(String, nullable=True)
    pushover_user = Column(String, nullable=True)


_OPEN_SESSION_CLAUSE = "status NOT IN ('completed', 'vaccination-completed', 'cancelled')"


class CheckInSession(Base):
    """One clinic visit, from check-in to completion or cancellation."""
    __tablename__ = "checkin_sessions"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    service_type = _enum_column(ServiceType, "service_type", nullable=False,
                                default=ServiceType.consultation)
    priority = _enum_column(Priority, "priority", nullable=False, default=Priority.normal)
    check_in_method = _enum_column(CheckInMethod, "check_in_method", nullable=False,
                                   default=CheckInMethod.staff_assisted)
    status = _enum_column(SessionStatus, "session_status", nullable=False,
                          default=SessionStatus.checked_in, index=True)
    assigned_doctor = Column(Integer, ForeignKey("doctors.id"), nullable=True)

    vital_signs_collected = Column(Boolean, nullable=False, default=False)
    vital_signs = Column(JSON, nullable=True)
    vitals_recorded_at = Column(DateTime, nullable=True)
    doctor_notified = Column(Boolean, nullable=False, default=False)
    notified_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    prescriptions = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(200), nullable=True)

    # Row version checked on every UPDATE (optimistic concurrency)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index(
            "uq_open_session_per_patient",
            "patient_id",
            unique=True,
            sqlite_where=text(_OPEN_SESSION_CLAUSE),
            postgresql_where=text(_OPEN_SESSION_CLAUSE),
        ),
    )

    # Relationships
    patient = relationship("Patient")
    doctor = relationship("Doctor")


class VitalSignsRecord(Base):
    """History row written every time vitals are recorded for a visit."""
    __tablename__ = "vital_signs"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("checkin_sessions.id"), nullable=False)
    temperature = Column(Float)
    heart_rate = Column(Integer)
    systolic_bp = Column(Integer)
    diastolic_bp = Column(Integer)
    respiratory_rate = Column(Integer, nullable=True)
    oxygen_saturation = Column(Float, nullable=True)
    weight = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    clinical_notes = Column(Text, nullable=True)
    recorded_by = Column(String, nullable=True)
    recorded_at = Column(DateTime, default=utcnow)


class AuditLog(Base):
    """Append-only audit trail of lifecycle changes."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    actor = Column(String, nullable=False)
    actor_role = Column(String, nullable=True)
    action = Column(String, nullable=False, index=True)
    target_id = Column(Integer, nullable=True, index=True)
    before_state = Column(String, nullable=True)
    after_state = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow)
    details = Column("metadata", JSON, nullable=True)  # typically patient/doctor names
