# tests/test_appointments_api.py
import pytest

from clinicgate.roles import Role

CONFLICT_BODY = {"error": "There is a scheduling conflict with another appointment"}


@pytest.fixture
def provider(make_user):
    return make_user(Role.HEALTHCARE_PROVIDER, name="Dr. Iyer")


@pytest.fixture
def patient_user(make_user):
    return make_user(Role.PATIENT, name="Asha Rao")


@pytest.fixture
def patient(make_patient, patient_user):
    return make_patient(user=patient_user)


def booking(patient, start="2030-01-15T10:00:00Z", end="2030-01-15T11:00:00Z", **extra):
    return {"patient_id": patient.id, "title": "Consultation", "start_time": start, "end_time": end, **extra}


@pytest.fixture
def booked(client, provider, patient, auth_headers):
    response = client.post("/api/appointments", json=booking(patient), headers=auth_headers(provider))
    assert response.status_code == 201
    return response.json()


# --- Authorization ---

def test_requires_sign_in(client, patient):
    response = client.post("/api/appointments", json=booking(patient))
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized - Please sign in"}


def test_patients_cannot_book(client, patient, patient_user, auth_headers):
    response = client.post("/api/appointments", json=booking(patient), headers=auth_headers(patient_user))
    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden - Insufficient permissions"}


def test_unverified_staff_cannot_book(client, make_user, patient, auth_headers):
    receptionist = make_user(Role.RECEPTIONIST, verified=False)
    response = client.post("/api/appointments", json=booking(patient), headers=auth_headers(receptionist))
    assert response.status_code == 403
    assert response.json() == {"error": "Email verification required"}


# --- Booking ---

def test_create_appointment(booked, patient, provider):
    assert booked["patient_id"] == patient.id
    assert booked["status"] == "SCHEDULED"
    assert booked["created_by"] == provider.id
    assert booked["patient"]["first_name"] == "Asha"


def test_overlapping_booking_is_rejected(client, booked, provider, patient, auth_headers):
    response = client.post(
        "/api/appointments",
        json=booking(patient, start="2030-01-15T10:30:00Z", end="2030-01-15T11:30:00Z"),
        headers=auth_headers(provider),
    )
    assert response.status_code == 400
    assert response.json() == CONFLICT_BODY


def test_back_to_back_booking_is_accepted(client, booked, provider, patient, auth_headers):
    response = client.post(
        "/api/appointments",
        json=booking(patient, start="2030-01-15T11:00:00Z", end="2030-01-15T11:30:00Z"),
        headers=auth_headers(provider),
    )
    assert response.status_code == 201


def test_booking_for_unknown_patient(client, provider, auth_headers):
    payload = {"patient_id": 999, "title": "Scan", "start_time": "2030-01-15T10:00:00Z", "end_time": "2030-01-15T11:00:00Z"}
    response = client.post("/api/appointments", json=payload, headers=auth_headers(provider))
    assert response.status_code == 404


def test_reversed_interval_fails_validation(client, provider, patient, auth_headers):
    response = client.post(
        "/api/appointments",
        json=booking(patient, start="2030-01-15T11:00:00Z", end="2030-01-15T10:00:00Z"),
        headers=auth_headers(provider),
    )
    assert response.status_code == 422


# --- Updates ---

def test_reschedule_into_conflict(client, booked, provider, patient, auth_headers):
    later = client.post(
        "/api/appointments",
        json=booking(patient, start="2030-01-15T13:00:00Z", end="2030-01-15T14:00:00Z"),
        headers=auth_headers(provider),
    ).json()

    response = client.patch(
        f"/api/appointments/{later['id']}",
        json={"start_time": "2030-01-15T10:30:00Z", "end_time": "2030-01-15T11:30:00Z"},
        headers=auth_headers(provider),
    )
    assert response.status_code == 400
    assert response.json() == CONFLICT_BODY


def test_reschedule_with_end_before_start(client, booked, provider, auth_headers):
    response = client.patch(
        f"/api/appointments/{booked['id']}",
        json={"end_time": "2030-01-15T09:00:00Z"},
        headers=auth_headers(provider),
    )
    assert response.status_code == 400


def test_cancelled_slot_can_be_booked_again(client, booked, provider, patient, auth_headers):
    response = client.patch(
        f"/api/appointments/{booked['id']}/status",
        json={"status": "CANCELLED", "notes": "Patient called in"},
        headers=auth_headers(provider),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    response = client.post("/api/appointments", json=booking(patient), headers=auth_headers(provider))
    assert response.status_code == 201


def test_delete_appointment(client, booked, provider, auth_headers):
    response = client.delete(f"/api/appointments/{booked['id']}", headers=auth_headers(provider))
    assert response.status_code == 204
    assert client.get(f"/api/appointments/{booked['id']}", headers=auth_headers(provider)).status_code == 404


# --- Reading ---

def test_patient_sees_own_appointments_only(client, booked, provider, make_patient, patient_user, auth_headers):
    other = make_patient(first_name="Kiran", last_name="Das")
    client.post("/api/appointments", json=booking(other), headers=auth_headers(provider))

    response = client.get("/api/appointments", headers=auth_headers(patient_user))
    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body["data"]] == [booked["id"]]
    assert body["pagination"]["total"] == 1


def test_patient_cannot_read_other_patients_appointment(client, provider, make_user, make_patient, auth_headers):
    other = make_patient(first_name="Kiran", last_name="Das")
    theirs = client.post("/api/appointments", json=booking(other), headers=auth_headers(provider)).json()
    stranger = make_user(Role.PATIENT)

    response = client.get(f"/api/appointments/{theirs['id']}", headers=auth_headers(stranger))
    assert response.status_code == 404


def test_staff_list_and_filter(client, booked, provider, auth_headers):
    response = client.get("/api/appointments", params={"status": "SCHEDULED"}, headers=auth_headers(provider))
    assert response.status_code == 200
    assert response.json()["pagination"]["total"] == 1

    response = client.get("/api/appointments", params={"status": "CANCELLED"}, headers=auth_headers(provider))
    assert response.json()["data"] == []


def test_read_status(client, booked, patient_user, auth_headers):
    response = client.get(f"/api/appointments/{booked['id']}/status", headers=auth_headers(patient_user))
    assert response.status_code == 200
    assert response.json()["status"] == "SCHEDULED"
