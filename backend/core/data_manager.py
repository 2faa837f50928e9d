"""
Generic CRUD over the portal's entity collections.

Every mutation follows the same pattern: write the record, then publish a
`<entity>_changed` event so that bound views can re-fetch. Single-record
updates go through the storage version check, so two callers editing the
same record never lose each other's write.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from core.appointments import AppointmentStore
from core.events import (
    AppointmentChanged,
    ClinicalNoteChanged,
    DoctorProfileChanged,
    EntityChanged,
    EventBus,
    MedicalRecordChanged,
    MessageChanged,
    PatientProfileChanged,
    UserChanged,
)
from core.exceptions import ConcurrentUpdateError
from core.models import (
    ClinicalNote,
    DoctorProfile,
    MedicalRecord,
    Message,
    PatientProfile,
    Record,
    Role,
    User,
)
from core.schedule import ScheduleStore
from core.storage import StorageAdapter
from core.utils import generate_id, now_iso

logger = logging.getLogger(__name__)

USERS = "users"
DOCTOR_PROFILES = "doctor_profiles"
PATIENT_PROFILES = "patient_profiles"
MEDICAL_RECORDS = "medical_records"
MESSAGES = "messages"
CLINICAL_NOTES = "clinical_notes"

SESSION_KEY = "user"
CREDENTIALS = "user_credentials"

ALL_COLLECTIONS = [
    USERS,
    DOCTOR_PROFILES,
    PATIENT_PROFILES,
    "appointments",
    "doctor_schedules",
    MEDICAL_RECORDS,
    MESSAGES,
    CLINICAL_NOTES,
    CREDENTIALS,
]


class DataManager:
    def __init__(
        self,
        storage: StorageAdapter,
        bus: EventBus,
        schedules: ScheduleStore,
        appointments: AppointmentStore,
    ):
        self.storage = storage
        self.bus = bus
        self.schedules = schedules
        self.appointments = appointments

    # Generic helpers
    async def _list(self, collection: str, model: Type[Record]) -> List[Any]:
        try:
            return [model.from_dict(r) for r in await self.storage.list_records(collection)]
        except Exception as e:
            logger.error(f"[DataManager] Error loading {collection}: {e}")
            return []

    async def _get(self, collection: str, model: Type[Record], record_id: str) -> Optional[Any]:
        record = await self.storage.get_record(collection, record_id)
        return model.from_dict(record) if record else None

    async def _create(
        self,
        collection: str,
        model: Type[Record],
        event: Type[EntityChanged],
        prefix: str,
        data: Dict[str, Any],
        record_id: Optional[str] = None,
        timestamps: tuple = ("createdAt", "updatedAt"),
    ) -> Any:
        now = now_iso()
        fields = {**data, "id": record_id or generate_id(prefix)}
        for key in timestamps:
            fields[key] = now

        entity = model.from_dict(fields)
        await self.storage.insert_record(collection, entity.to_dict())
        await self.bus.publish(event(type="create", data=entity.to_dict()))
        return entity

    async def _update(
        self,
        collection: str,
        model: Type[Record],
        event: Type[EntityChanged],
        record_id: str,
        updates: Dict[str, Any],
        touch: bool = True,
    ) -> Optional[Any]:
        def mutate(record):
            record.update({k: v for k, v in updates.items() if k != "id"})
            if touch:
                record["updatedAt"] = now_iso()
            return record

        try:
            record = await self.storage.modify_record(collection, record_id, mutate)
        except ConcurrentUpdateError as e:
            logger.error(f"[DataManager] {e}")
            return None

        if record is None:
            return None

        entity = model.from_dict(record)
        await self.bus.publish(event(type="update", data=entity.to_dict()))
        return entity

    async def _delete(self, collection: str, event: Type[EntityChanged], record_id: str) -> bool:
        if not await self.storage.delete_record(collection, record_id):
            return False
        await self.bus.publish(event(type="delete", data={"id": record_id}))
        return True

    # User management
    async def get_users(self) -> List[User]:
        return await self._list(USERS, User)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._get(USERS, User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in await self.get_users() if u.email == email), None)

    async def create_user(self, data: Dict[str, Any], user_id: Optional[str] = None) -> User:
        return await self._create(USERS, User, UserChanged, "user", data, record_id=user_id)

    async def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[User]:
        return await self._update(USERS, User, UserChanged, user_id, updates)

    async def delete_user(self, user_id: str) -> bool:
        # Appointments and records owned by the user are kept
        return await self._delete(USERS, UserChanged, user_id)

    # Doctor profiles
    async def get_doctor_profiles(self) -> List[DoctorProfile]:
        return await self._list(DOCTOR_PROFILES, DoctorProfile)

    async def get_doctor_profile(self, doctor_id: str) -> Optional[DoctorProfile]:
        return await self._get(DOCTOR_PROFILES, DoctorProfile, doctor_id)

    async def create_doctor_profile(self, data: Dict[str, Any], doctor_id: Optional[str] = None) -> DoctorProfile:
        """Add a doctor, their user account and a month of default schedules"""
        doctor = await self._create(
            DOCTOR_PROFILES, DoctorProfile, DoctorProfileChanged, "doctor", data, record_id=doctor_id
        )

        await self.create_user(
            {
                "name": doctor.name,
                "email": doctor.email,
                "role": Role.DOCTOR.value,
                "status": doctor.status,
                "profile": {"specialty": doctor.specialty},
            },
            user_id=doctor.id,
        )
        await self.schedules.create_schedules_for_doctor(doctor.id, doctor.name, doctor.specialty)
        return doctor

    async def update_doctor_profile(self, doctor_id: str, updates: Dict[str, Any]) -> Optional[DoctorProfile]:
        return await self._update(DOCTOR_PROFILES, DoctorProfile, DoctorProfileChanged, doctor_id, updates)

    async def delete_doctor_profile(self, doctor_id: str) -> bool:
        if not await self._delete(DOCTOR_PROFILES, DoctorProfileChanged, doctor_id):
            return False
        await self.schedules.delete_schedules_for_doctor(doctor_id)
        return True

    async def sync_doctor_profiles(self) -> None:
        profiles = [p.to_dict() for p in await self.get_doctor_profiles()]
        await self.bus.publish(DoctorProfileChanged(type="sync", data=profiles))

    # Patient profiles
    async def get_patient_profiles(self) -> List[PatientProfile]:
        return await self._list(PATIENT_PROFILES, PatientProfile)

    async def create_patient_profile(self, data: Dict[str, Any], patient_id: Optional[str] = None) -> PatientProfile:
        return await self._create(
            PATIENT_PROFILES,
            PatientProfile,
            PatientProfileChanged,
            "patient",
            data,
            record_id=patient_id,
            timestamps=("registrationDate",),
        )

    # Medical records
    async def get_medical_records(self, patient_id: Optional[str] = None) -> List[MedicalRecord]:
        records = await self._list(MEDICAL_RECORDS, MedicalRecord)
        return [r for r in records if r.patient_id == patient_id] if patient_id else records

    async def create_medical_record(self, data: Dict[str, Any]) -> MedicalRecord:
        return await self._create(MEDICAL_RECORDS, MedicalRecord, MedicalRecordChanged, "record", data)

    async def update_medical_record(self, record_id: str, updates: Dict[str, Any]) -> Optional[MedicalRecord]:
        return await self._update(MEDICAL_RECORDS, MedicalRecord, MedicalRecordChanged, record_id, updates)

    async def delete_medical_record(self, record_id: str) -> bool:
        return await self._delete(MEDICAL_RECORDS, MedicalRecordChanged, record_id)

    # Messages
    async def get_messages(self, user_id: Optional[str] = None) -> List[Message]:
        messages = await self._list(MESSAGES, Message)
        if not user_id:
            return messages
        return [m for m in messages if m.sender_id == user_id or m.receiver_id == user_id]

    async def get_message(self, message_id: str) -> Optional[Message]:
        return await self._get(MESSAGES, Message, message_id)

    async def create_message(self, data: Dict[str, Any]) -> Message:
        return await self._create(
            MESSAGES, Message, MessageChanged, "msg", data, timestamps=("createdAt",)
        )

    async def mark_message_as_read(self, message_id: str) -> bool:
        updated = await self._update(
            MESSAGES, Message, MessageChanged, message_id, {"isRead": True}, touch=False
        )
        return updated is not None

    async def delete_message(self, message_id: str) -> bool:
        return await self._delete(MESSAGES, MessageChanged, message_id)

    # Clinical notes
    async def get_clinical_notes(
        self, doctor_id: Optional[str] = None, patient_id: Optional[str] = None
    ) -> List[ClinicalNote]:
        notes = await self._list(CLINICAL_NOTES, ClinicalNote)
        if doctor_id:
            notes = [n for n in notes if n.doctor_id == doctor_id]
        if patient_id:
            notes = [n for n in notes if n.patient_id == patient_id]
        return notes

    async def create_clinical_note(self, data: Dict[str, Any]) -> ClinicalNote:
        return await self._create(CLINICAL_NOTES, ClinicalNote, ClinicalNoteChanged, "note", data)

    async def update_clinical_note(self, note_id: str, updates: Dict[str, Any]) -> Optional[ClinicalNote]:
        return await self._update(CLINICAL_NOTES, ClinicalNote, ClinicalNoteChanged, note_id, updates)

    async def delete_clinical_note(self, note_id: str) -> bool:
        return await self._delete(CLINICAL_NOTES, ClinicalNoteChanged, note_id)

    # Cross-view sync and dashboards
    async def sync_appointment_data(self) -> None:
        appointments = [a.to_dict() for a in await self.appointments.get_all_appointments()]
        await self.bus.publish(AppointmentChanged(type="sync", data=appointments))

    async def get_statistics(self) -> Dict[str, int]:
        appointments = await self.appointments.get_all_appointments()
        users = await self.get_users()
        messages = await self.get_messages()

        return {
            "totalAppointments": len(appointments),
            "pendingAppointments": sum(1 for a in appointments if a.status == "pending"),
            "approvedAppointments": sum(1 for a in appointments if a.status == "approved"),
            "totalPatients": sum(1 for u in users if u.role == Role.PATIENT.value),
            "totalDoctors": sum(1 for u in users if u.role == Role.DOCTOR.value),
            "totalMedicalRecords": len(await self.get_medical_records()),
            "unreadMessages": sum(1 for m in messages if not m.is_read),
            "totalClinicalNotes": len(await self.get_clinical_notes()),
        }

    async def clear_all_data(self) -> None:
        """Wipe every collection (credentials included) and the session entry"""
        for collection in ALL_COLLECTIONS:
            removed = await self.storage.clear_collection(collection)
            if removed:
                logger.info(f"[DataManager] Cleared {removed} records from {collection}")
        await self.storage.remove_value(SESSION_KEY)
