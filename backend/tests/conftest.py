from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from core.auth import InMemoryCredentialVerifier
from core.config import Settings
from core.events import EventBus
from core.services import create_services
from core.storage import InMemoryStorage

# A Monday, so the first working week is complete
MONDAY = date(2024, 1, 1)

ADMIN_EMAIL = "admin@hospital.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def credentials():
    return InMemoryCredentialVerifier().seed(ADMIN_EMAIL, ADMIN_PASSWORD, "admin", "Administrator", "admin_1")


@pytest.fixture
def services(credentials):
    return create_services(Settings(), storage=InMemoryStorage(), credentials=credentials)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def doctor_data(name="Dr. Sarah Johnson", email="sarah@hospital.com", specialty="Cardiology"):
    return {"name": name, "email": email, "specialty": specialty, "status": "active"}


def appointment_data(**overrides):
    data = {
        "patientId": "patient_1",
        "patientName": "John Doe",
        "patientEmail": "john@example.com",
        "doctorId": "doctor_1",
        "doctorName": "Dr. Sarah Johnson",
        "date": "2024-01-02",
        "time": "09:00",
        "type": "General consultation",
    }
    data.update(overrides)
    return data


def registration_form(**overrides):
    form = {
        "firstName": "John",
        "lastName": "Doe",
        "email": "john@example.com",
        "password": "secret1",
        "confirmPassword": "secret1",
        "phone": "+62 812-3456-7890",
        "nik": "3171234567890123",
    }
    form.update(overrides)
    return form


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})
