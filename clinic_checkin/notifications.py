"""
notifications.py
=================
Handles WebSocket and Pushover notifications for doctors.
"""

import logging
from typing import Dict, List, Optional

import requests
from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool

from . import config
from .models import CheckInSession, Doctor

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"

# Registry to store connected WebSocket clients per doctor
connected_doctors: Dict[int, List[WebSocket]] = {}

# ---------------------------------------------------------------------------
# Pushover Notification (optional)
# ---------------------------------------------------------------------------

def send_pushover(user_key: Optional[str], title: str, message: str) -> bool:
    """
    Sends a push notification using the Pushover API.
    Requires PUSHOVER_TOKEN in the environment and a per-doctor user key.
    Returns True when the push was accepted.
    """
    if not user_key:
        return False  # no pushover user configured

    token = config.PUSHOVER_TOKEN
    if not token:
        logger.debug("Pushover token not configured, skipping notification.")
        return False

    try:
        resp = requests.post(
            PUSHOVER_URL,
            data={"token": token, "user": user_key, "title": title, "message": message},
            timeout=5,
        )
    except requests.RequestException as exc:
        logger.warning("Pushover send failed: %s", exc)
        return False
    if resp.status_code != 200:
        logger.warning("Pushover error %s: %s", resp.status_code, resp.text)
        return False
    return True

# ---------------------------------------------------------------------------
# WebSocket Registry
# ---------------------------------------------------------------------------

def register_ws(doctor_id: int, ws: WebSocket):
    """Register a WebSocket connection for a doctor."""
    connected_doctors.setdefault(doctor_id, []).append(ws)
    logger.info("🩺 Doctor %s connected via WebSocket (%s active).",
                doctor_id, len(connected_doctors[doctor_id]))


def unregister_ws(doctor_id: int, ws: WebSocket):
    """Unregister a WebSocket connection when disconnected."""
    if doctor_id in connected_doctors:
        connected_doctors[doctor_id] = [w for w in connected_doctors[doctor_id] if w != ws]
        if not connected_doctors[doctor_id]:
            del connected_doctors[doctor_id]
    logger.info("Doctor %s disconnected. Remaining sockets: %s",
                doctor_id, len(connected_doctors.get(doctor_id, [])))


async def broadcast_to_doctor(doctor_id: int, data: dict) -> int:
    """Send a JSON message to all active WebSocket connections for a doctor."""
    delivered = 0
    for ws in list(connected_doctors.get(doctor_id, [])):
        try:
            await ws.send_json(data)
            delivered += 1
        except Exception as exc:
            # Closed or dropped socket; stop sending to it
            logger.warning("Failed to send WS message to doctor %s: %s", doctor_id, exc)
            unregister_ws(doctor_id, ws)
    return delivered


async def broadcast_to_all(data: dict) -> int:
    delivered = 0
    for doctor_id in list(connected_doctors):
        delivered += await broadcast_to_doctor(doctor_id, data)
    return delivered

# ---------------------------------------------------------------------------
# Lifecycle alerts
# ---------------------------------------------------------------------------

async def announce_patient_ready(session: CheckInSession, doctor: Optional[Doctor]) -> int:
    """
    Tell doctors a patient is ready to be seen.
    A routed session alerts its doctor only; an unrouted one goes to every
    connected doctor. Returns the number of WebSocket deliveries.
    """
    patient_name = session.patient.name if session.patient else f"Patient {session.patient_id}"
    event = {
        "event": "patient_ready",
        "session_id": session.id,
        "patient_id": session.patient_id,
        "patient_name": patient_name,
        "priority": session.priority.value,
        "service_type": session.service_type.value,
    }

    if doctor is None:
        return await broadcast_to_all(event)

    await run_in_threadpool(
        send_pushover,
        user_key=doctor.pushover_user,
        title="Patient Ready",
        message=f"{patient_name} ({session.service_type.value}) is ready for checkup",
    )
    return await broadcast_to_doctor(doctor.id, event)
