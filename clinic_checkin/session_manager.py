"""
session_manager.py
==================
This module handles the check-in workflow for a clinic visit:
 - Front desk checks the patient in (walk-in, QR scan, staff-assisted)
 - Nurse records vital signs
 - Front desk notifies the doctor
 - Doctor starts and completes the checkup
 - Admins may force-complete or cancel a visit

Every transition is validated by lifecycle.py, committed under the row's
version check, and then written to the audit log.
"""

import datetime
import logging
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import lifecycle
from .audit import Actor, AuditEntry, DatabaseAuditSink, emit
from .errors import (
    ConcurrentModification, DuplicateActiveSession, InvalidState, NotFound,
    VitalsNotCollected,
)
from .models import (
    CheckInMethod, CheckInSession, Doctor, Patient, Priority, ServiceType,
    SessionStatus, VitalSignsRecord, utcnow,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor()


class CheckInService:
    """
    Applies lifecycle operations to check-in sessions.

    One instance wraps one database session (one request). The row version
    column makes every UPDATE conditional on the version that was read, so a
    transition decided on stale data fails with ConcurrentModification.
    """

    def __init__(self, db: Session, audit_sink=None):
        self.db = db
        self.audit_sink = audit_sink or DatabaseAuditSink()

    # -----------------------------------------------------------------------
    # LOOKUPS
    # -----------------------------------------------------------------------

    def get_session(self, session_id: int) -> CheckInSession:
        session = self.db.get(CheckInSession, session_id)
        if session is None:
            raise NotFound(f"Check-in session {session_id} not found")
        return session

    def _load(self, session_id: int) -> CheckInSession:
        """Re-read the row inside the current transaction before mutating it."""
        session = self.db.get(
            CheckInSession, session_id, populate_existing=True, with_for_update=True
        )
        if session is None:
            raise NotFound(f"Check-in session {session_id} not found")
        return session

    def _patient(self, patient_id: int) -> Patient:
        patient = self.db.get(Patient, patient_id)
        if patient is None:
            raise NotFound(f"Patient {patient_id} not found")
        return patient

    def _doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if doctor is None:
            raise NotFound(f"Doctor {doctor_id} not found")
        return doctor

    def _open_session(self, patient_id: int) -> Optional[CheckInSession]:
        return (
            self.db.query(CheckInSession)
            .filter(
                CheckInSession.patient_id == patient_id,
                CheckInSession.status.notin_(list(lifecycle.TERMINAL_STATUSES)),
            )
            .first()
        )

    # -----------------------------------------------------------------------
    # CHECK-IN
    # -----------------------------------------------------------------------

    def check_in(
        self,
        patient_id: int,
        service_type: ServiceType = ServiceType.consultation,
        priority: Priority = Priority.normal,
        actor: Actor = SYSTEM_ACTOR,
        doctor_id: Optional[int] = None,
        check_in_method: CheckInMethod = CheckInMethod.staff_assisted,
        notes: Optional[str] = None,
    ) -> CheckInSession:
        """Open a new visit in `checked-in` for a patient with no open visit."""
        patient = self._patient(patient_id)
        if doctor_id is not None:
            self._doctor(doctor_id)

        open_session = self._open_session(patient.id)
        if open_session is not None:
            raise DuplicateActiveSession(
                f"Patient {patient.id} already has an open check-in session "
                f"({open_session.id}, {open_session.status.value})"
            )

        session = CheckInSession(
            patient_id=patient.id,
            service_type=service_type,
            priority=priority,
            check_in_method=check_in_method,
            status=SessionStatus.checked_in,
            assigned_doctor=doctor_id,
            notes=notes,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Lost the race against a concurrent check-in for the same patient
            self.db.rollback()
            raise DuplicateActiveSession(
                f"Patient {patient.id} already has an open check-in session"
            ) from exc
        self.db.refresh(session)

        logger.info(
            "📋 Patient %s checked in (session %s, %s, %s)",
            patient.id, session.id, service_type.value, priority.value,
        )
        self._audit(actor, "patient_checked_in", session, None, {
            "service_type": service_type.value,
            "priority": priority.value,
            "check_in_method": check_in_method.value,
        })
        return session

    def move_to_waiting(self, session_id: int, actor: Actor = SYSTEM_ACTOR) -> CheckInSession:
        session = self._load(session_id)
        before = session.status
        lifecycle.ensure_transition(before, SessionStatus.waiting)

        session.status = SessionStatus.waiting
        return self._commit_transition(session, before, "moved_to_waiting", actor)

    # -----------------------------------------------------------------------
    # NURSE / FRONT DESK
    # -----------------------------------------------------------------------

    def record_vitals(
        self,
        session_id: int,
        vitals: Dict[str, Optional[float]],
        actor: Actor = SYSTEM_ACTOR,
        clinical_notes: Optional[str] = None,
    ) -> CheckInSession:
        """
        Store a validated set of vital signs and move the visit to
        `vitals-collected`. Allowed from `checked-in` and `waiting` only.
        """
        session = self._load(session_id)
        before = session.status
        if before not in (SessionStatus.checked_in, SessionStatus.waiting):
            raise InvalidState(
                f"Vital signs can only be recorded for checked-in or waiting patients "
                f"(session is '{before.value}')"
            )
        lifecycle.validate_vitals(vitals)
        lifecycle.ensure_transition(before, SessionStatus.vitals_collected)

        readings = {
            name: vitals.get(name)
            for name in lifecycle.VITAL_RANGES
            if vitals.get(name) is not None
        }
        now = utcnow()
        session.vital_signs = readings
        session.vital_signs_collected = True
        session.vitals_recorded_at = now
        session.status = SessionStatus.vitals_collected

        self.db.add(VitalSignsRecord(
            patient_id=session.patient_id,
            session_id=session.id,
            clinical_notes=clinical_notes,
            recorded_by=actor.id,
            recorded_at=now,
            **readings,
        ))
        return self._commit_transition(session, before, "vital_signs_recorded", actor, {
            "vital_signs": readings,
        })

    def notify_doctor(self, session_id: int, actor: Actor = SYSTEM_ACTOR) -> CheckInSession:
        """Put the patient in the doctor queue once vitals are in."""
        session = self._load(session_id)
        before = session.status
        if not session.vital_signs_collected:
            raise VitalsNotCollected(
                "Vital signs must be recorded before notifying doctor"
            )
        lifecycle.ensure_transition(before, SessionStatus.doctor_notified)

        session.doctor_notified = True
        session.notified_at = utcnow()
        session.status = SessionStatus.doctor_notified
        return self._commit_transition(session, before, "doctor_notified", actor)

    # -----------------------------------------------------------------------
    # DOCTOR
    # -----------------------------------------------------------------------

    def start_checkup(
        self, session_id: int, doctor_id: int, actor: Actor = SYSTEM_ACTOR
    ) -> CheckInSession:
        session = self._load(session_id)
        doctor = self._doctor(doctor_id)
        before = session.status
        if before != SessionStatus.doctor_notified:
            raise InvalidState(
                f"Patient must be in the doctor queue before starting checkup "
                f"(session is '{before.value}')"
            )
        if session.assigned_doctor is not None and session.assigned_doctor != doctor.id:
            raise InvalidState(
                f"Session {session.id} is routed to doctor {session.assigned_doctor}"
            )

        session.assigned_doctor = doctor.id
        session.started_at = utcnow()
        session.status = SessionStatus.in_progress
        return self._commit_transition(session, before, "checkup_started", actor)

    def complete_checkup(
        self,
        session_id: int,
        notes: Optional[str] = None,
        diagnosis: Optional[str] = None,
        prescriptions: Optional[List] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> CheckInSession:
        """
        Finish an in-progress checkup. Vaccination visits end in
        `vaccination-completed`, every other service in `completed`.
        """
        session = self._load(session_id)
        before = session.status
        if before != SessionStatus.in_progress:
            raise InvalidState(
                f"Checkup must be in progress to complete (session is '{before.value}')"
            )
        target = lifecycle.completion_status(session.service_type)
        lifecycle.ensure_transition(before, target)

        if notes is not None:
            session.notes = notes
        session.diagnosis = diagnosis
        session.prescriptions = list(prescriptions or [])
        session.completed_at = utcnow()
        session.status = target
        return self._commit_transition(session, before, "checkup_completed", actor, {
            "diagnosis": diagnosis,
            "prescription_count": len(session.prescriptions),
        })

    # -----------------------------------------------------------------------
    # ADMINISTRATIVE
    # -----------------------------------------------------------------------

    def force_complete(self, session_id: int, actor: Actor = SYSTEM_ACTOR) -> CheckInSession:
        """
        Close an open visit as `completed` regardless of where it stands.
        A visit that is already terminal is returned unchanged.
        """
        session = self._load(session_id)
        before = session.status
        if lifecycle.is_terminal(before):
            logger.info("Session %s already %s; force-complete is a no-op", session.id, before.value)
            return session

        session.completed_at = utcnow()
        session.status = SessionStatus.completed
        return self._commit_transition(session, before, "checkup_force_completed", actor, {
            "override": True,
            "actor_role": actor.role,
        })

    def cancel(
        self, session_id: int, reason: Optional[str] = None, actor: Actor = SYSTEM_ACTOR
    ) -> CheckInSession:
        session = self._load(session_id)
        before = session.status
        lifecycle.ensure_open(before)
        lifecycle.ensure_transition(before, SessionStatus.cancelled)

        session.cancelled_at = utcnow()
        session.cancellation_reason = reason
        session.status = SessionStatus.cancelled
        return self._commit_transition(session, before, "checkin_cancelled", actor, {
            "reason": reason,
        })

    # -----------------------------------------------------------------------
    # READ VIEWS
    # -----------------------------------------------------------------------

    def list_sessions(
        self, status: Optional[SessionStatus] = None, day: Optional[datetime.date] = None
    ) -> List[CheckInSession]:
        """Sessions matching the filter in queue order (check-in time)."""
        query = self.db.query(CheckInSession)
        if status is not None:
            query = query.filter(CheckInSession.status == status)
        if day is not None:
            start = datetime.datetime.combine(day, datetime.time.min)
            query = query.filter(
                CheckInSession.created_at >= start,
                CheckInSession.created_at < start + datetime.timedelta(days=1),
            )
        return query.order_by(CheckInSession.created_at.asc(), CheckInSession.id.asc()).all()

    def completed_since(self, minutes: int) -> List[CheckInSession]:
        since = utcnow() - datetime.timedelta(minutes=minutes)
        return (
            self.db.query(CheckInSession)
            .filter(
                CheckInSession.status.in_(list(lifecycle.COMPLETED_STATUSES)),
                CheckInSession.completed_at >= since,
            )
            .order_by(CheckInSession.completed_at.asc())
            .all()
        )

    def today_stats(self) -> Dict[str, int]:
        """Counts of today's sessions per status, plus progress totals."""
        today = self.list_sessions(day=utcnow().date())
        counts = Counter(s.status for s in today)
        stats = {status.value: counts.get(status, 0) for status in SessionStatus}
        stats["total"] = len(today)
        stats["vitalsCollected"] = sum(1 for s in today if s.vital_signs_collected)
        stats["doctorNotified"] = sum(1 for s in today if s.doctor_notified)
        return stats

    def doctor_queue(self, doctor_id: int) -> List[CheckInSession]:
        """Open sessions waiting on (or being seen by) this doctor, or unrouted."""
        doctor = self._doctor(doctor_id)
        return (
            self.db.query(CheckInSession)
            .filter(
                CheckInSession.status.in_(
                    [SessionStatus.doctor_notified, SessionStatus.in_progress]
                ),
                or_(
                    CheckInSession.assigned_doctor == doctor.id,
                    CheckInSession.assigned_doctor.is_(None),
                ),
            )
            .order_by(CheckInSession.created_at.asc(), CheckInSession.id.asc())
            .all()
        )

    def vitals_history(self, patient_id: int) -> List[VitalSignsRecord]:
        patient = self._patient(patient_id)
        return (
            self.db.query(VitalSignsRecord)
            .filter(VitalSignsRecord.patient_id == patient.id)
            .order_by(VitalSignsRecord.recorded_at.desc(), VitalSignsRecord.id.desc())
            .all()
        )

    # -----------------------------------------------------------------------
    # INTERNALS
    # -----------------------------------------------------------------------

    def _commit_transition(
        self,
        session: CheckInSession,
        before: SessionStatus,
        action: str,
        actor: Actor,
        metadata: Optional[dict] = None,
    ) -> CheckInSession:
        session_id = session.id
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Session %s changed concurrently during %s", session_id, action)
            raise ConcurrentModification(
                f"Check-in session {session_id} was modified by another request; "
                f"reload and retry"
            ) from exc

        self.db.refresh(session)
        logger.info(
            "Session %s: %s -> %s (%s by %s)",
            session_id, before.value, session.status.value, action, actor.id,
        )
        self._audit(actor, action, session, before, metadata)
        return session

    def _audit(
        self,
        actor: Actor,
        action: str,
        session: CheckInSession,
        before: Optional[SessionStatus],
        metadata: Optional[dict] = None,
    ) -> None:
        details = {"patient_id": session.patient_id}
        if session.patient is not None:
            details["patient_name"] = session.patient.name
        if session.doctor is not None:
            details["doctor_id"] = session.doctor.id
            details["doctor_name"] = session.doctor.name
        details.update(metadata or {})

        emit(self.audit_sink, AuditEntry(
            actor=actor,
            action=action,
            target_id=session.id,
            before_state=before.value if before is not None else None,
            after_state=session.status.value,
            metadata=details,
        ))
