from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field, asdict, fields
from enum import Enum


class Role(Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class UserStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AppointmentStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Transitions observed in the portal. Reschedule is allowed from any state.
ALLOWED_TRANSITIONS: Dict[AppointmentStatus, set] = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.APPROVED,
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.APPROVED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.REJECTED: set(),
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    try:
        return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]
    except ValueError:
        return False


class MedicalRecordType(Enum):
    DIAGNOSIS = "diagnosis"
    TREATMENT = "treatment"
    TEST_RESULT = "test_result"
    PRESCRIPTION = "prescription"
    NOTE = "note"


class MessageType(Enum):
    GENERAL = "general"
    APPOINTMENT = "appointment"
    MEDICAL = "medical"
    SYSTEM = "system"


VERSION_FIELD = "_version"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class Record:
    """Mixin for dataclasses persisted as camelCase JSON.

    Optional fields left as None are dropped on the way out so that stored
    documents look like the ones the browser portal wrote.
    """

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = [v.to_dict() if isinstance(v, Record) else v for v in value]
            data[_camel(f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs = {}
        for f in fields(cls):
            key = _camel(f.name)
            if key in data:
                kwargs[f.name] = data[key]
        return cls(**kwargs)


@dataclass
class User(Record):
    id: str
    name: str
    email: str
    role: str = Role.PATIENT.value
    status: str = UserStatus.ACTIVE.value
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None


@dataclass
class DoctorProfile(Record):
    id: str
    name: str
    email: str
    specialty: str
    status: str = UserStatus.ACTIVE.value
    phone: Optional[str] = None
    license_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class PatientProfile(Record):
    id: str
    first_name: str
    last_name: str
    email: str
    phone: str
    status: str = UserStatus.ACTIVE.value
    nik: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relation: Optional[str] = None
    registration_date: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class TimeSlot(Record):
    id: str
    time: str  # HH:MM format
    is_available: bool = True
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    appointment_type: Optional[str] = None


@dataclass
class DoctorSchedule(Record):
    id: str
    doctor_id: str
    doctor_name: str
    specialty: str
    date: str  # YYYY-MM-DD format
    time_slots: List[TimeSlot] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DoctorSchedule":
        return cls(
            id=data["id"],
            doctor_id=data["doctorId"],
            doctor_name=data.get("doctorName", ""),
            specialty=data.get("specialty", ""),
            date=data["date"],
            time_slots=[TimeSlot.from_dict(s) for s in data.get("timeSlots", [])],
        )

    def find_slot(self, slot_id: str) -> Optional[TimeSlot]:
        return next((s for s in self.time_slots if s.id == slot_id), None)


@dataclass
class Appointment(Record):
    id: str
    patient_id: str
    patient_name: str
    patient_email: str
    doctor_id: str
    doctor_name: str
    date: str  # YYYY-MM-DD format
    time: str  # HH:MM format
    type: str
    status: str = AppointmentStatus.PENDING.value
    notes: Optional[str] = None
    complaints: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class MedicalRecord(Record):
    id: str
    patient_id: str
    title: str
    description: str
    date: str
    type: str = MedicalRecordType.NOTE.value
    doctor_id: Optional[str] = None
    attachments: Optional[List[str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Message(Record):
    id: str
    sender_id: str
    receiver_id: str
    subject: str
    content: str
    is_read: bool = False
    type: str = MessageType.GENERAL.value
    created_at: Optional[str] = None


@dataclass
class ClinicalNote(Record):
    id: str
    doctor_id: str
    patient_id: str
    diagnosis: str
    treatment: str
    notes: str
    appointment_id: Optional[str] = None
    follow_up: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SessionUser:
    """The logged-in identity kept in the `user` key and session cookie"""

    email: str
    role: str
    name: str
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["id"] is None:
            del data["id"]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["SessionUser"]:
        if not isinstance(data, dict):
            return None
        if not data.get("email") or not data.get("role") or not data.get("name"):
            return None
        return cls(
            email=data["email"], role=data["role"], name=data["name"], id=data.get("id")
        )
