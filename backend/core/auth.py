import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote, unquote

from itsdangerous import BadSignature, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from core.data_manager import CREDENTIALS, SESSION_KEY, DataManager
from core.exceptions import AuthenticationError, ValidationError
from core.models import PatientProfile, Role, SessionUser
from core.storage import StorageAdapter
from core.utils import generate_id, is_valid_email, is_valid_nik, is_valid_phone

logger = logging.getLogger(__name__)

# `user` mirrors the session for the dashboard page gate only; the API
# trusts nothing but the signed `session` token.
SESSION_COOKIE = "user"
SESSION_TOKEN_COOKIE = "session"
SESSION_SALT = "hospital-portal-session"

PUBLIC_PATHS = {"/", "/login", "/register"}
ROLE_PREFIXES = {
    "/patient": Role.PATIENT.value,
    "/doctor": Role.DOCTOR.value,
    "/admin": Role.ADMIN.value,
}

MIN_PASSWORD_LENGTH = 6


class CredentialVerifier(Protocol):
    async def verify(self, email: str, password: str) -> Optional[SessionUser]:
        ...

    async def register(
        self, email: str, password: str, role: str, name: str, user_id: Optional[str] = None
    ) -> bool:
        ...

    async def exists(self, email: str) -> bool:
        ...


class HashedCredentialStore:
    """One `user_credentials` record per email, holding a salted hash.

    The email is the record id, so `register` is an insert that fails when
    the email is taken: two concurrent registrations can never overwrite
    each other.
    """

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def exists(self, email: str) -> bool:
        return await self.storage.get_record(CREDENTIALS, email) is not None

    async def register(
        self, email: str, password: str, role: str, name: str, user_id: Optional[str] = None
    ) -> bool:
        """Store credentials for a new email. False if it is already registered."""
        created = await self.storage.insert_record(
            CREDENTIALS,
            {
                "id": email,
                "passwordHash": generate_password_hash(password),
                "role": Role(role).value,
                "name": name,
                "userId": user_id,
            },
        )
        if not created:
            logger.warning(f"[Auth] Credentials for {email} already exist")
            return False

        logger.info(f"[Auth] Registered credentials for {email}")
        return True

    async def verify(self, email: str, password: str) -> Optional[SessionUser]:
        entry = await self.storage.get_record(CREDENTIALS, email)
        if not entry or not check_password_hash(entry.get("passwordHash", ""), password):
            return None
        return SessionUser(email=email, role=entry["role"], name=entry["name"], id=entry.get("userId"))


class InMemoryCredentialVerifier:
    """Seedable credential fake for tests and local demos.

    Passwords are still hashed so the fake never holds plaintext.
    """

    def __init__(self):
        self._users: Dict[str, Dict[str, Any]] = {}

    def seed(self, email: str, password: str, role: str, name: str, user_id: Optional[str] = None):
        self._users[email] = {
            "passwordHash": generate_password_hash(password),
            "user": SessionUser(email=email, role=Role(role).value, name=name, id=user_id),
        }
        return self

    async def exists(self, email: str) -> bool:
        return email in self._users

    async def register(
        self, email: str, password: str, role: str, name: str, user_id: Optional[str] = None
    ) -> bool:
        if email in self._users:
            return False
        self.seed(email, password, role, name, user_id)
        return True

    async def verify(self, email: str, password: str) -> Optional[SessionUser]:
        entry = self._users.get(email)
        if entry and check_password_hash(entry["passwordHash"], password):
            return entry["user"]
        return None


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=SESSION_SALT)


def sign_session(user: SessionUser, secret_key: str) -> str:
    return _serializer(secret_key).dumps(user.to_dict())


def load_session(token: Optional[str], secret_key: str, max_age: Optional[int] = None) -> Optional[SessionUser]:
    """The user a signed session token was issued to; None if it was altered or expired"""
    if not token:
        return None
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age)
    except BadSignature as e:
        logger.info(f"[Auth] Rejected session token: {e}")
        return None
    return SessionUser.from_dict(data)


def encode_session_cookie(user: SessionUser) -> str:
    return quote(json.dumps(user.to_dict(), separators=(",", ":")), safe="")


def decode_session_cookie(raw: Optional[str]) -> Optional[SessionUser]:
    if not raw:
        return None
    try:
        return SessionUser.from_dict(json.loads(unquote(raw)))
    except ValueError as e:
        logger.debug(f"[Auth] Cookie parsing error: {e}")
        return None


def is_path_allowed(path: str, user: Optional[SessionUser]) -> bool:
    """Gate for dashboard routes: public pages are open, role areas need that role"""
    if path in PUBLIC_PATHS:
        return True
    if user is None:
        return False
    for prefix, role in ROLE_PREFIXES.items():
        if path.startswith(prefix) and user.role != role:
            return False
    return True


def validate_patient_registration(form: Dict[str, Any]) -> None:
    """Raise ValidationError with a user-facing message for a bad form"""
    required = ("firstName", "lastName", "email", "password", "confirmPassword", "phone")
    if any(not form.get(key) for key in required):
        raise ValidationError("All required fields must be filled in")

    if form["password"] != form["confirmPassword"]:
        raise ValidationError("Passwords do not match")

    if len(form["password"]) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if not is_valid_email(form["email"]):
        raise ValidationError("Invalid email format")

    if not is_valid_phone(form["phone"]):
        raise ValidationError("Invalid phone number")

    if form.get("nik") and not is_valid_nik(form["nik"]):
        raise ValidationError("NIK must be 16 digits")


class SessionManager:
    """Login, logout and patient self-registration"""

    def __init__(
        self,
        storage: StorageAdapter,
        credentials: CredentialVerifier,
        data: DataManager,
        login_delay: float = 0.0,
    ):
        self.storage = storage
        self.credentials = credentials
        self.data = data
        self.login_delay = login_delay

    async def current_user(self) -> Optional[SessionUser]:
        try:
            return SessionUser.from_dict(await self.storage.get_value(SESSION_KEY))
        except Exception as e:
            logger.error(f"[Auth] Error reading session: {e}")
            return None

    async def login(self, email: str, password: str) -> SessionUser:
        if self.login_delay:
            await asyncio.sleep(self.login_delay)

        user = await self.credentials.verify(email, password)
        if user is None:
            logger.info(f"[Auth] Failed login for {email}")
            raise AuthenticationError("Invalid email or password. Please check your credentials.")

        await self.storage.set_value(SESSION_KEY, user.to_dict())
        logger.info(f"[Auth] User authenticated: {email} ({user.role})")
        return user

    async def logout(self) -> None:
        await self.storage.remove_value(SESSION_KEY)

    async def register_patient(self, form: Dict[str, Any]) -> SessionUser:
        """Create the credentials, patient profile and user account, then log in"""
        validate_patient_registration(form)

        existing = await self.data.get_patient_profiles()
        if any(p.email == form["email"] for p in existing):
            raise ValidationError("Email is already registered")
        if form.get("nik") and any(p.nik == form["nik"] for p in existing):
            raise ValidationError("NIK is already registered")

        # The credential insert claims the email; nothing else is written
        # unless it succeeds.
        patient_id = generate_id("patient")
        full_name = f"{form['firstName']} {form['lastName']}".strip()
        if not await self.credentials.register(
            form["email"], form["password"], Role.PATIENT.value, full_name, patient_id
        ):
            raise ValidationError("Email is already registered")

        profile_fields = {
            k: v for k, v in form.items() if k not in ("password", "confirmPassword")
        }
        patient: PatientProfile = await self.data.create_patient_profile(profile_fields, patient_id=patient_id)

        await self.data.create_user(
            {
                "name": patient.full_name,
                "email": patient.email,
                "role": Role.PATIENT.value,
                "profile": {"phone": patient.phone},
            },
            user_id=patient.id,
        )

        user = SessionUser(
            email=patient.email, role=Role.PATIENT.value, name=patient.full_name, id=patient.id
        )
        await self.storage.set_value(SESSION_KEY, user.to_dict())
        logger.info(f"[Auth] Registered patient {patient.id}")
        return user
