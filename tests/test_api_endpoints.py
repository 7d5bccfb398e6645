"""
test_api_endpoints.py
=====================
API test cases for the clinic check-in backend.
Tests cover:
 - Root health check
 - Check-in and duplicate detection
 - Vital signs validation
 - Doctor notification, checkup start and completion
 - Force-complete and cancellation
 - Session listing, stats and the doctor queue
 - WebSocket alerts
 - Input validation
"""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from clinic_checkin import notifications
from clinic_checkin.db import SessionLocal
from clinic_checkin.main import app, get_audit_sink
from clinic_checkin.models import AuditLog, Patient
from clinic_checkin.errors import AuditWriteFailure

VITALS = {"temperature": 37.0, "heartRate": 80, "systolicBp": 120, "diastolicBp": 80}


# --------------------------------------------------------------------------
# FIXTURE: Create isolated test client + temporary DB
# --------------------------------------------------------------------------

@pytest.fixture
def client(database):
    """
    Test client bound to the temporary database from conftest.
    Startup seeds the default doctors (ids 1-5).
    """
    db = SessionLocal()
    db.add_all([
        Patient(id=109, name="Maria Santos", age=34),
        Patient(id=110, name="Jose Rizal", age=61),
    ])
    db.commit()
    db.close()

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def check_in(client, patient_id=109, **extra):
    res = client.post("/checkin", json={"patientId": patient_id, **extra})
    assert res.status_code == 201, res.text
    return res.json()


def walk_to_in_progress(client, session_id, doctor_id=3):
    assert client.patch(f"/sessions/{session_id}/vitals", json=VITALS).status_code == 200
    assert client.post(f"/sessions/{session_id}/notify-doctor").status_code == 200
    res = client.post(f"/sessions/{session_id}/start", json={"doctorId": doctor_id})
    assert res.status_code == 200, res.text
    return res.json()


# --------------------------------------------------------------------------
# TESTS
# --------------------------------------------------------------------------

def test_root_endpoint(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "check-in" in res.json()["message"]


def test_check_in_creates_session(client):
    res = client.post("/checkin", json={
        "patientId": 109,
        "serviceType": "consultation",
        "priority": "high",
        "checkInMethod": "qr-scan",
    })
    assert res.status_code == 201

    data = res.json()
    assert data["patientId"] == 109
    assert data["status"] == "checked-in"
    assert data["priority"] == "high"
    assert data["checkInMethod"] == "qr-scan"
    assert data["vitalSignsCollected"] is False
    assert data["doctorNotified"] is False
    assert data["completedAt"] is None


def test_check_in_unknown_patient(client):
    res = client.post("/checkin", json={"patientId": 999})
    assert res.status_code == 404
    assert res.json()["error"] == "NotFound"


def test_duplicate_check_in(client):
    check_in(client)
    res = client.post("/checkin", json={"patientId": 109})
    assert res.status_code == 409
    assert res.json()["error"] == "DuplicateActiveSession"


def test_invalid_input(client):
    """Missing patientId is rejected by request validation."""
    res = client.post("/checkin", json={"serviceType": "consultation"})
    assert res.status_code == 422

    res = client.post("/checkin", json={"patientId": 109, "serviceType": "surgery"})
    assert res.status_code == 422


def test_vitals_out_of_range(client):
    session = check_in(client)
    res = client.patch(f"/sessions/{session['id']}/vitals", json={**VITALS, "heartRate": 250})
    assert res.status_code == 422

    body = res.json()
    assert body["error"] == "OutOfRangeVital"
    assert body["field"] == "heart_rate"
    assert body["maximum"] == 200

    res = client.get(f"/sessions/{session['id']}")
    assert res.json()["status"] == "checked-in"


def test_vitals_recorded(client):
    session = check_in(client)
    res = client.patch(
        f"/sessions/{session['id']}/vitals",
        json={**VITALS, "oxygenSaturation": 98, "clinicalNotes": "no complaints"},
        headers={"X-Actor-Id": "nurse.jones", "X-Actor-Role": "nurse"},
    )
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "vitals-collected"
    assert data["vitalSignsCollected"] is True
    assert data["vitalSigns"]["oxygen_saturation"] == 98

    history = client.get("/patients/109/vitals").json()
    assert len(history) == 1
    assert history[0]["recordedBy"] == "nurse.jones"
    assert history[0]["clinicalNotes"] == "no complaints"


def test_notify_doctor_requires_vitals(client):
    session = check_in(client)
    res = client.post(f"/sessions/{session['id']}/notify-doctor")
    assert res.status_code == 409
    assert res.json()["error"] == "VitalsNotCollected"


def test_start_requires_notification(client):
    session = check_in(client)
    client.patch(f"/sessions/{session['id']}/vitals", json=VITALS)
    res = client.post(f"/sessions/{session['id']}/start", json={"doctorId": 3})
    assert res.status_code == 409
    assert res.json()["error"] == "InvalidState"


def test_complete_requires_in_progress(client):
    session = check_in(client)
    res = client.post(f"/sessions/{session['id']}/complete", json={"notes": "x"})
    assert res.status_code == 409


def test_full_visit_flow(client):
    session = check_in(client, serviceType="general-checkup")
    started = walk_to_in_progress(client, session["id"])
    assert started["status"] == "in-progress"
    assert started["assignedDoctor"] == 3

    res = client.post(f"/sessions/{session['id']}/complete", json={
        "notes": "routine",
        "diagnosis": "Healthy",
        "prescriptions": [{"drug": "Vitamin C", "dose": "500mg"}],
    })
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "completed"
    assert data["completedAt"] is not None
    assert data["prescriptions"][0]["drug"] == "Vitamin C"

    db = SessionLocal()
    try:
        actions = [
            row.action for row in
            db.query(AuditLog).filter(AuditLog.target_id == session["id"]).order_by(AuditLog.id)
        ]
    finally:
        db.close()
    assert len(actions) == 5
    assert actions[0] == "patient_checked_in"
    assert actions[-1] == "checkup_completed"


def test_force_complete_is_idempotent(client):
    session = check_in(client)
    client.post(f"/sessions/{session['id']}/waiting")

    headers = {"X-Actor-Id": "admin", "X-Actor-Role": "admin"}
    res = client.post(f"/sessions/{session['id']}/force-complete", headers=headers)
    assert res.status_code == 200
    first = res.json()
    assert first["status"] == "completed"

    res = client.post(f"/sessions/{session['id']}/force-complete", headers=headers)
    assert res.status_code == 200
    assert res.json()["completedAt"] == first["completedAt"]
    assert res.json()["updatedAt"] == first["updatedAt"]


def test_force_complete_unknown_session(client):
    res = client.post("/sessions/999/force-complete")
    assert res.status_code == 404


def test_cancel(client):
    session = check_in(client)
    res = client.post(f"/sessions/{session['id']}/cancel", json={"reason": "no-show"})
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert res.json()["cancellationReason"] == "no-show"

    res = client.post(f"/sessions/{session['id']}/cancel", json={})
    assert res.status_code == 409


def test_list_sessions_in_queue_order(client):
    first = check_in(client, 109)
    second = check_in(client, 110)
    client.patch(f"/sessions/{first['id']}/vitals", json=VITALS)

    res = client.get("/sessions")
    assert [s["id"] for s in res.json()] == [first["id"], second["id"]]

    res = client.get("/sessions", params={"status": "checked-in"})
    assert [s["id"] for s in res.json()] == [second["id"]]

    today = first["createdAt"][:10]
    res = client.get("/sessions", params={"date": today})
    assert len(res.json()) == 2

    res = client.get("/sessions", params={"date": "2001-01-01"})
    assert res.json() == []

    res = client.get("/sessions", params={"status": "finished"})
    assert res.status_code == 422


def test_stats_and_recent_completions(client):
    first = check_in(client, 109)
    check_in(client, 110)
    client.post(f"/sessions/{first['id']}/force-complete")

    stats = client.get("/sessions/stats/today").json()
    assert stats["total"] == 2
    assert stats["completed"] == 1
    assert stats["checked-in"] == 1

    recent = client.get("/sessions/completed", params={"minutes": 5}).json()
    assert [s["id"] for s in recent] == [first["id"]]


def test_doctor_queue(client):
    routed = check_in(client, 109, doctorId=2)
    unrouted = check_in(client, 110)
    for session in (routed, unrouted):
        client.patch(f"/sessions/{session['id']}/vitals", json=VITALS)
        client.post(f"/sessions/{session['id']}/notify-doctor")

    assert [s["id"] for s in client.get("/doctors/2/queue").json()] == [
        routed["id"], unrouted["id"],
    ]
    assert [s["id"] for s in client.get("/doctors/3/queue").json()] == [unrouted["id"]]
    assert client.get("/doctors/99/queue").status_code == 404


def test_doctor_receives_websocket_alert(client):
    session = check_in(client)
    client.patch(f"/sessions/{session['id']}/vitals", json=VITALS)

    with client.websocket_connect("/ws/doctor/3") as ws:
        ws.send_text("hello")
        assert ws.receive_text() == "Echo: hello"

        res = client.post(f"/sessions/{session['id']}/notify-doctor")
        assert res.status_code == 200

        event = ws.receive_json()
        assert event["event"] == "patient_ready"
        assert event["session_id"] == session["id"]
        assert event["patient_name"] == "Maria Santos"


def test_dropped_doctor_socket_does_not_fail_notify(client, monkeypatch):
    class DroppedSocket:
        async def send_json(self, data):
            raise WebSocketDisconnect(code=1006)

    sockets = {1: [DroppedSocket()]}
    monkeypatch.setattr(notifications, "connected_doctors", sockets)

    session = check_in(client)
    client.patch(f"/sessions/{session['id']}/vitals", json=VITALS)
    res = client.post(f"/sessions/{session['id']}/notify-doctor")

    assert res.status_code == 200
    assert res.json()["status"] == "doctor-notified"
    assert sockets == {}


def test_audit_failure_does_not_fail_request(client):
    class BrokenSink:
        def write(self, entry):
            raise AuditWriteFailure("audit store unavailable")

    app.dependency_overrides[get_audit_sink] = lambda: BrokenSink()
    res = client.post("/checkin", json={"patientId": 109})
    assert res.status_code == 201
    assert res.json()["status"] == "checked-in"
