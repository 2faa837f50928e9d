import asyncio

import pytest
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, registration_form

from core.auth import (
    HashedCredentialStore,
    decode_session_cookie,
    encode_session_cookie,
    is_path_allowed,
    load_session,
    sign_session,
    validate_patient_registration,
)
from core.config import Settings
from core.exceptions import AuthenticationError, ValidationError
from core.models import SessionUser
from core.services import create_services
from core.storage import InMemoryStorage


class YieldingStorage(InMemoryStorage):
    """Gives other tasks a turn on every read and insert, the way a network backend does"""

    async def list_records(self, collection):
        await asyncio.sleep(0)
        return await super().list_records(collection)

    async def insert_record(self, collection, record):
        await asyncio.sleep(0)
        return await super().insert_record(collection, record)


async def test_hashed_store_never_keeps_plaintext(storage):
    store = HashedCredentialStore(storage)
    assert await store.register("doc@hospital.com", "doctor123", "doctor", "Dr. Who", "doctor_1") is True

    stored = await storage.get_record("user_credentials", "doc@hospital.com")
    assert stored["passwordHash"]
    assert "doctor123" not in str(stored)
    assert await store.exists("doc@hospital.com")

    user = await store.verify("doc@hospital.com", "doctor123")
    assert user == SessionUser(email="doc@hospital.com", role="doctor", name="Dr. Who", id="doctor_1")
    assert await store.verify("doc@hospital.com", "wrong") is None
    assert await store.verify("nobody@hospital.com", "doctor123") is None


async def test_hashed_store_keeps_first_registration(storage):
    store = HashedCredentialStore(storage)
    assert await store.register("doc@hospital.com", "doctor123", "doctor", "Dr. Who") is True
    assert await store.register("doc@hospital.com", "other456", "admin", "Impostor") is False

    assert (await store.verify("doc@hospital.com", "doctor123")).role == "doctor"
    assert await store.verify("doc@hospital.com", "other456") is None


async def test_concurrent_registrations_all_persist():
    store = HashedCredentialStore(YieldingStorage())
    emails = [f"user{i}@example.com" for i in range(4)]

    results = await asyncio.gather(*(store.register(e, "secret1", "patient", e) for e in emails))

    assert results == [True] * 4
    for email in emails:
        assert await store.verify(email, "secret1") is not None


async def test_hashed_store_rejects_unknown_role(storage):
    with pytest.raises(ValueError):
        await HashedCredentialStore(storage).register("x@y.com", "secret1", "superuser", "X")


async def test_login_sets_and_logout_clears_session(services):
    user = await services.sessions.login(ADMIN_EMAIL, ADMIN_PASSWORD)

    assert user.role == "admin"
    assert await services.sessions.current_user() == user

    await services.sessions.logout()
    assert await services.sessions.current_user() is None


async def test_login_failure(services):
    with pytest.raises(AuthenticationError):
        await services.sessions.login(ADMIN_EMAIL, "wrong-password")
    assert await services.sessions.current_user() is None


async def test_register_patient_creates_profile_user_and_credentials(services):
    user = await services.sessions.register_patient(registration_form())

    assert (user.role, user.name) == ("patient", "John Doe")
    profiles = await services.data.get_patient_profiles()
    assert profiles[0].id == user.id
    assert profiles[0].registration_date
    assert (await services.data.get_user(user.id)).role == "patient"
    assert await services.credentials.verify("john@example.com", "secret1") == user
    assert await services.sessions.current_user() == user


async def test_register_patient_rejects_duplicates(services):
    await services.sessions.register_patient(registration_form())

    with pytest.raises(ValidationError, match="Email"):
        await services.sessions.register_patient(registration_form())
    with pytest.raises(ValidationError, match="NIK"):
        await services.sessions.register_patient(registration_form(email="other@example.com"))


async def test_concurrent_sign_ups_with_one_email_create_one_patient():
    services = create_services(Settings(), storage=YieldingStorage())

    results = await asyncio.gather(
        services.sessions.register_patient(registration_form()),
        services.sessions.register_patient(registration_form(nik="3171234567890999")),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, ValidationError)) == 1
    profiles = await services.data.get_patient_profiles()
    assert len(profiles) == 1
    assert [u.id for u in await services.data.get_users()] == [profiles[0].id]
    assert (await services.credentials.verify("john@example.com", "secret1")).id == profiles[0].id


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"lastName": ""}, "required"),
        ({"confirmPassword": "different"}, "do not match"),
        ({"password": "abc", "confirmPassword": "abc"}, "at least 6"),
        ({"email": "not-an-email"}, "email"),
        ({"phone": "12-34"}, "phone"),
        ({"nik": "12345"}, "NIK"),
    ],
)
def test_registration_validation(overrides, message):
    with pytest.raises(ValidationError) as exc_info:
        validate_patient_registration(registration_form(**overrides))
    assert message.lower() in exc_info.value.message.lower()


def test_registration_without_nik_is_valid():
    form = registration_form()
    del form["nik"]
    validate_patient_registration(form)


def test_session_cookie_round_trip():
    user = SessionUser(email="a@b.com", role="doctor", name="Dr. A")

    assert decode_session_cookie(encode_session_cookie(user)) == user
    assert decode_session_cookie(None) is None
    assert decode_session_cookie("%7Bbroken") is None
    assert decode_session_cookie("%7B%22email%22%3A%22a%40b.com%22%7D") is None


def test_path_gate():
    patient = SessionUser(email="p@x.com", role="patient", name="P")

    assert is_path_allowed("/login", None)
    assert not is_path_allowed("/patient", None)
    assert is_path_allowed("/patient/appointments", patient)
    assert not is_path_allowed("/admin", patient)
    assert not is_path_allowed("/doctor/schedule", patient)


def test_signed_session_round_trip():
    user = SessionUser(email="a@b.com", role="doctor", name="Dr. A", id="doctor_1")
    token = sign_session(user, "secret-one")

    assert load_session(token, "secret-one") == user
    assert load_session(token, "secret-two") is None
    assert load_session("f" + token[1:], "secret-one") is None
    assert load_session(encode_session_cookie(user), "secret-one") is None
    assert load_session(None, "secret-one") is None


def test_expired_session_is_rejected(monkeypatch):
    user = SessionUser(email="a@b.com", role="admin", name="A")
    monkeypatch.setattr("itsdangerous.timed.TimestampSigner.get_timestamp", lambda self: 1_700_000_000)
    token = sign_session(user, "secret-one")

    monkeypatch.setattr("itsdangerous.timed.TimestampSigner.get_timestamp", lambda self: 1_700_000_120)
    assert load_session(token, "secret-one", max_age=60) is None
    assert load_session(token, "secret-one", max_age=300) == user
