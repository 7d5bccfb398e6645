"""
main.py
========
This is the FastAPI entry point for the clinic check-in backend.
It:
 - Initializes the database and logging.
 - Seeds default doctors if none exist.
 - Exposes REST API endpoints for the check-in session lifecycle.
 - Handles WebSocket connections for real-time doctor notifications.
"""

import datetime
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import config
from .audit import Actor, DatabaseAuditSink
from .db import SessionLocal, get_db, init_db
from .errors import CheckInError
from .models import Base, Doctor, SessionStatus
from .notifications import announce_patient_ready, register_ws, unregister_ws
from .schemas import (
    CancelRequest, CheckInRequest, CompleteCheckupRequest, SessionResponse,
    StartCheckupRequest, VitalSignsRecordResponse, VitalSignsRequest,
)
from .session_manager import CheckInService

logger = logging.getLogger(__name__)

DEFAULT_DOCTORS = [
    ("Dr. Alice", "General Medicine"),
    ("Dr. Bob", "Pediatrics"),
    ("Dr. Clara", "Family Medicine"),
    ("Dr. Daniel", "Dentistry"),
    ("Dr. Emma", "Internal Medicine"),
]

# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------

app = FastAPI(title="Clinic Check-In Backend", version="1.0")

# Allow the SPA to communicate
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckInError)
async def checkin_error_handler(request: Request, exc: CheckInError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# APP STARTUP EVENT
# ---------------------------------------------------------------------------

def configure_logging():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def seed_doctors(db: Session):
    """Create the default doctor roster when the table is empty."""
    doctor_count = db.query(Doctor).count()
    if doctor_count:
        logger.info("🩻 %s doctors already exist in the system.", doctor_count)
        return
    logger.info("🩺 No doctors found. Seeding default doctors...")
    db.add_all([
        Doctor(name=name, specialty=specialty)
        for name, specialty in DEFAULT_DOCTORS
    ])
    db.commit()


@app.on_event("startup")
def startup_event():
    """
    Called when FastAPI starts.
    Initializes logging and the database, then seeds doctors.
    """
    configure_logging()
    logger.info("🚀 Starting clinic check-in backend...")
    init_db(Base)  # Create tables if missing

    if config.SEED_DOCTORS:
        db = SessionLocal()
        try:
            seed_doctors(db)
        finally:
            db.close()


# ---------------------------------------------------------------------------
# DEPENDENCIES
# ---------------------------------------------------------------------------

def get_audit_sink():
    return DatabaseAuditSink()


def get_service(
    db: Session = Depends(get_db), audit_sink=Depends(get_audit_sink)
) -> CheckInService:
    return CheckInService(db, audit_sink)


def get_actor(
    x_actor_id: str = Header(default="system"),
    x_actor_role: str = Header(default="staff"),
) -> Actor:
    """Who is acting; authentication happens upstream of this service."""
    return Actor(id=x_actor_id, role=x_actor_role)


# ---------------------------------------------------------------------------
# API ENDPOINTS
# ---------------------------------------------------------------------------

@app.post("/checkin", response_model=SessionResponse, status_code=201)
def api_check_in(
    req: CheckInRequest,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    """
    Check a patient in.

    - 201 with the new session
    - 404 if the patient (or routed doctor) does not exist
    - 409 if the patient already has an open session
    """
    return service.check_in(
        req.patient_id,
        service_type=req.service_type,
        priority=req.priority,
        actor=actor,
        doctor_id=req.doctor_id,
        check_in_method=req.check_in_method,
        notes=req.notes,
    )


@app.get("/sessions", response_model=List[SessionResponse])
def api_list_sessions(
    status: Optional[SessionStatus] = None,
    date: Optional[datetime.date] = None,
    service: CheckInService = Depends(get_service),
):
    """List sessions in queue order, optionally filtered by status and check-in date."""
    return service.list_sessions(status=status, day=date)


@app.get("/sessions/completed", response_model=List[SessionResponse])
def api_completed_sessions(
    minutes: int = Query(default=config.RECENT_COMPLETED_MINUTES, ge=1, le=24 * 60),
    service: CheckInService = Depends(get_service),
):
    """Sessions completed within the last `minutes` minutes."""
    return service.completed_since(minutes)


@app.get("/sessions/stats/today")
def api_today_stats(service: CheckInService = Depends(get_service)):
    return service.today_stats()


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def api_get_session(session_id: int, service: CheckInService = Depends(get_service)):
    return service.get_session(session_id)


@app.post("/sessions/{session_id}/waiting", response_model=SessionResponse)
def api_move_to_waiting(
    session_id: int,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    return service.move_to_waiting(session_id, actor)


@app.patch("/sessions/{session_id}/vitals", response_model=SessionResponse)
def api_record_vitals(
    session_id: int,
    req: VitalSignsRequest,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    """Record vital signs; 422 with the offending field when a value is out of range."""
    return service.record_vitals(
        session_id, req.readings(), actor=actor, clinical_notes=req.clinical_notes
    )


def _notify_doctor(service: CheckInService, session_id: int, actor: Actor):
    session = service.notify_doctor(session_id, actor)
    # Load the relationships the alert reads while still off the event loop
    session.patient
    return session, session.doctor


@app.post("/sessions/{session_id}/notify-doctor", response_model=SessionResponse)
async def api_notify_doctor(
    session_id: int,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    """
    Move the patient into the doctor queue and alert the doctor.
    409 if vital signs have not been recorded.
    Database work runs in the threadpool; alerts go out after the commit.
    """
    session, doctor = await run_in_threadpool(_notify_doctor, service, session_id, actor)
    await announce_patient_ready(session, doctor)
    return session


@app.post("/sessions/{session_id}/start", response_model=SessionResponse)
def api_start_checkup(
    session_id: int,
    req: StartCheckupRequest,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    return service.start_checkup(session_id, req.doctor_id, actor)


@app.post("/sessions/{session_id}/complete", response_model=SessionResponse)
def api_complete_checkup(
    session_id: int,
    req: CompleteCheckupRequest,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    return service.complete_checkup(
        session_id,
        notes=req.notes,
        diagnosis=req.diagnosis,
        prescriptions=req.prescriptions,
        actor=actor,
    )


@app.post("/sessions/{session_id}/force-complete", response_model=SessionResponse)
def api_force_complete(
    session_id: int,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    """Administrative override. Returns a terminal session unchanged."""
    return service.force_complete(session_id, actor)


@app.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
def api_cancel(
    session_id: int,
    req: CancelRequest,
    service: CheckInService = Depends(get_service),
    actor: Actor = Depends(get_actor),
):
    return service.cancel(session_id, reason=req.reason, actor=actor)


@app.get("/doctors/{doctor_id}/queue", response_model=List[SessionResponse])
def api_doctor_queue(doctor_id: int, service: CheckInService = Depends(get_service)):
    """
    Get the sessions waiting on a doctor (for the doctor dashboard).
    """
    return service.doctor_queue(doctor_id)


@app.get("/patients/{patient_id}/vitals", response_model=List[VitalSignsRecordResponse])
def api_vitals_history(patient_id: int, service: CheckInService = Depends(get_service)):
    return service.vitals_history(patient_id)


# ---------------------------------------------------------------------------
# WEBSOCKET ENDPOINT
# ---------------------------------------------------------------------------

@app.websocket("/ws/doctor/{doctor_id}")
async def websocket_doctor(ws: WebSocket, doctor_id: int):
    """
    WebSocket endpoint for real-time notifications.
    Doctors connect here to receive patient-ready alerts.
    """
    await ws.accept()
    register_ws(doctor_id, ws)
    try:
        while True:
            data = await ws.receive_text()
            await ws.send_text(f"Echo: {data}")
    except WebSocketDisconnect:
        unregister_ws(doctor_id, ws)


# ---------------------------------------------------------------------------
# ROOT ENDPOINT
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    """Basic health check endpoint."""
    return {"message": "Clinic check-in backend is running!"}
