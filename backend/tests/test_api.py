"""
Integration tests for the HTTP and WebSocket surface.

They drive the FastAPI app through the test client with in-memory storage,
covering the login flow, role checks, booking and appointment state changes.
"""

import json
from urllib.parse import quote

import pytest
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, doctor_data, login, registration_form
from starlette.websockets import WebSocketDisconnect

from core.auth import sign_session
from core.models import SessionUser


def create_doctor(client, password="doctor123"):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    response = client.post("/api/doctors", json={**doctor_data(), "password": password})
    assert response.status_code == 201
    return response.json()["doctor"]


def first_open_slot(client, doctor_id):
    schedules = client.get("/api/schedules", params={"doctor_id": doctor_id}).json()["schedules"]
    schedule = schedules[0]
    return schedule["date"], schedule["timeSlots"][0]


def book_as_new_patient(client, doctor_id, date, slot_id):
    client.post("/api/auth/logout")
    assert client.post("/api/auth/register", json=registration_form()).status_code == 201
    response = client.post(
        "/api/bookings", json={"doctorId": doctor_id, "date": date, "slotId": slot_id, "type": "Checkup"}
    )
    assert response.status_code == 201
    return response.json()["appointment"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_login_sets_cookie_and_me(client):
    response = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    assert response.status_code == 200
    assert response.json()["redirect"] == "/admin"
    assert "user" in response.cookies
    assert "session" in response.cookies

    me = client.get("/api/auth/me")
    assert me.json()["user"]["email"] == ADMIN_EMAIL

    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401


def test_unsigned_identity_is_not_trusted(client):
    forged = {"email": "evil@x.com", "role": "admin", "name": "Evil"}
    client.cookies.set("user", quote(json.dumps(forged), safe=""))

    assert client.get("/api/auth/me").status_code == 401
    response = client.post("/api/users", json={"name": "Evil", "email": "evil@x.com", "role": "admin"})
    assert response.status_code == 401


def test_tampered_session_token_is_rejected(client):
    client.post("/api/auth/register", json=registration_form())
    token = client.cookies.get("session")
    client.cookies.clear()

    client.cookies.set("session", "f" + token[1:])
    assert client.get("/api/auth/me").status_code == 401

    admin = SessionUser(email="evil@x.com", role="admin", name="Evil")
    client.cookies.clear()
    client.cookies.set("session", sign_session(admin, "guessed-secret"))
    assert client.get("/api/users").status_code == 401

    client.cookies.clear()
    client.cookies.set("session", token)
    assert client.get("/api/auth/me").json()["user"]["email"] == "john@example.com"


def test_bad_login(client):
    response = login(client, ADMIN_EMAIL, "nope")
    assert response.status_code == 401
    assert "Invalid email or password" in response.json()["detail"]


def test_registration_errors_are_400(client):
    response = client.post("/api/auth/register", json=registration_form(confirmPassword="other"))
    assert response.status_code == 400
    assert response.json()["detail"] == "Passwords do not match"


def test_role_checks(client):
    assert client.get("/api/users").status_code == 401

    client.post("/api/auth/register", json=registration_form())
    assert client.get("/api/users").status_code == 403
    assert client.post("/api/doctors", json=doctor_data()).status_code == 403


def test_admin_user_crud(client):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    created = client.post(
        "/api/users", json={"name": "Nurse Joy", "email": "joy@hospital.com", "role": "admin", "password": "nurse123"}
    )
    assert created.status_code == 201
    user_id = created.json()["user_id"]

    assert client.post("/api/users", json={"name": "Dup", "email": "joy@hospital.com"}).status_code == 400
    assert client.put(f"/api/users/{user_id}", json={"status": "inactive"}).json()["user"]["status"] == "inactive"
    assert client.get(f"/api/users/{user_id}").json()["name"] == "Nurse Joy"

    assert login(client, "joy@hospital.com", "nurse123").status_code == 200

    assert client.delete(f"/api/users/{user_id}").status_code == 200
    assert client.get(f"/api/users/{user_id}").status_code == 404


def test_doctor_gets_login_and_schedules(client):
    doctor = create_doctor(client)

    assert [d["id"] for d in client.get("/api/doctors").json()["doctors"]] == [doctor["id"]]
    date, slot = first_open_slot(client, doctor["id"])
    assert slot["time"] == "09:00"

    slots = client.get(f"/api/schedules/{doctor['id']}/{date}/slots").json()["availableSlots"]
    assert len(slots) == 6

    response = login(client, "sarah@hospital.com", "doctor123")
    assert response.json()["user"]["id"] == doctor["id"]


def test_booking_flow(client):
    doctor = create_doctor(client)
    date, slot = first_open_slot(client, doctor["id"])

    appointment = book_as_new_patient(client, doctor["id"], date, slot["id"])
    assert appointment["status"] == "pending"
    assert appointment["time"] == "09:00"

    again = client.post("/api/bookings", json={"doctorId": doctor["id"], "date": date, "slotId": slot["id"]})
    assert again.status_code == 409

    mine = client.get("/api/appointments").json()["appointments"]
    assert [a["id"] for a in mine] == [appointment["id"]]

    # Patients cannot approve their own appointments
    assert client.post(f"/api/appointments/{appointment['id']}/approve").status_code == 403


def test_appointment_transitions(client):
    doctor = create_doctor(client)
    date, slot = first_open_slot(client, doctor["id"])
    appointment = book_as_new_patient(client, doctor["id"], date, slot["id"])
    appointment_id = appointment["id"]

    login(client, "sarah@hospital.com", "doctor123")
    assert len(client.get("/api/appointments/pending").json()["appointments"]) == 1

    # pending -> completed skips approval
    assert client.post(f"/api/appointments/{appointment_id}/complete").status_code == 409

    approved = client.post(f"/api/appointments/{appointment_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["appointment"]["status"] == "approved"

    assert client.put(f"/api/appointments/{appointment_id}/status", json={"status": "completed"}).status_code == 200
    assert client.post(f"/api/appointments/{appointment_id}/approve").status_code == 409

    stats = client.get("/api/appointments/stats").json()
    assert stats["total"] == 1 and stats["completed"] == 1

    assert client.post("/api/appointments/apt_missing/approve").status_code == 404


def test_cancel_and_reschedule(client):
    doctor = create_doctor(client)
    date, slot = first_open_slot(client, doctor["id"])
    appointment = book_as_new_patient(client, doctor["id"], date, slot["id"])

    moved = client.post(f"/api/appointments/{appointment['id']}/reschedule", json={"date": "2030-06-03", "time": "3 PM"})
    assert moved.status_code == 200
    assert (moved.json()["appointment"]["date"], moved.json()["appointment"]["time"]) == ("2030-06-03", "15:00")

    cancelled = client.post(f"/api/appointments/{appointment['id']}/cancel", json={"reason": "Travelling"})
    assert cancelled.json()["appointment"]["notes"] == "Cancelled: Travelling"

    # The slot stays booked until an admin releases it
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    open_ids = [s["id"] for s in client.get(f"/api/schedules/{doctor['id']}/{date}/slots").json()["availableSlots"]]
    assert slot["id"] not in open_ids

    released = client.post("/api/schedules/release", json={"doctorId": doctor["id"], "date": date, "slotId": slot["id"]})
    assert released.status_code == 200
    open_ids = [s["id"] for s in client.get(f"/api/schedules/{doctor['id']}/{date}/slots").json()["availableSlots"]]
    assert slot["id"] in open_ids


def test_records_and_messages(client):
    doctor = create_doctor(client)
    client.post("/api/auth/logout")
    patient = client.post("/api/auth/register", json=registration_form()).json()["user"]

    login(client, "sarah@hospital.com", "doctor123")
    record = client.post(
        "/api/medical-records",
        json={"patientId": patient["id"], "title": "ECG", "description": "Normal rhythm", "date": "2024-01-02", "type": "test_result"},
    )
    assert record.status_code == 201
    assert record.json()["record"]["doctorId"] == doctor["id"]

    note = client.post(
        "/api/clinical-notes",
        json={"patientId": patient["id"], "diagnosis": "Healthy", "treatment": "None", "notes": "Annual check"},
    )
    assert note.json()["note"]["doctorId"] == doctor["id"]

    sent = client.post("/api/messages", json={"receiverId": patient["id"], "subject": "Results", "content": "All normal"})
    message_id = sent.json()["message_id"]

    login(client, "john@example.com", "secret1")
    assert [r["title"] for r in client.get("/api/medical-records").json()["records"]] == ["ECG"]
    assert client.get("/api/clinical-notes").status_code == 403

    inbox = client.get("/api/messages").json()["messages"]
    assert inbox[0]["isRead"] is False
    assert client.post(f"/api/messages/{message_id}/read").status_code == 200
    assert client.get("/api/messages").json()["messages"][0]["isRead"] is True

    stats = client.get("/api/statistics").json()
    assert stats["totalMedicalRecords"] == 1 and stats["unreadMessages"] == 0


def test_only_participants_touch_a_message(client):
    create_doctor(client)
    client.post("/api/auth/logout")
    patient = client.post("/api/auth/register", json=registration_form()).json()["user"]

    login(client, "sarah@hospital.com", "doctor123")
    sent = client.post("/api/messages", json={"receiverId": patient["id"], "subject": "Results", "content": "All normal"})
    message_id = sent.json()["message_id"]

    client.post("/api/auth/logout")
    client.post("/api/auth/register", json=registration_form(email="jane@example.com", nik="3171234567890999"))
    assert client.post(f"/api/messages/{message_id}/read").status_code == 403
    assert client.delete(f"/api/messages/{message_id}").status_code == 403
    assert client.post("/api/messages/msg_missing/read").status_code == 404

    login(client, "john@example.com", "secret1")
    assert client.get("/api/messages").json()["messages"][0]["isRead"] is False
    assert client.post(f"/api/messages/{message_id}/read").status_code == 200


def test_updates_websocket_forwards_events(client, services):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    with client.websocket_connect("/ws/updates") as websocket:
        assert websocket.receive_json() == {"type": "welcome", "message": "connected"}

        client.post("/api/messages", json={"receiverId": "doctor_1", "subject": "Hi", "content": "Hello"})

        event = websocket.receive_json()
        assert event["event"] == "message_changed"
        assert event["type"] == "create"
        assert event["data"]["subject"] == "Hi"

    assert services.bus.listener_count("message_changed") == 0


def test_sync_websocket_sends_snapshots(client):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    with client.websocket_connect("/ws/sync/users") as websocket:
        assert websocket.receive_json() == {"key": "users", "state": "data", "data": [], "error": None}

        client.post("/api/users", json={"name": "Ann", "email": "ann@example.com"})

        snapshot = websocket.receive_json()
        assert [u["email"] for u in snapshot["data"]] == ["ann@example.com"]


def test_sync_websocket_unknown_key(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/sync/nothing"):
            pass
