import logging
from datetime import date
from typing import Any, Dict, List, Optional

from core.events import EventBus, ScheduleChanged
from core.exceptions import ConcurrentUpdateError
from core.models import DoctorSchedule, DoctorProfile, TimeSlot, UserStatus
from core.storage import StorageAdapter
from core.utils import DEFAULT_SLOT_TIMES, upcoming_weekdays, week_dates

logger = logging.getLogger(__name__)

SCHEDULES = "doctor_schedules"
DOCTOR_PROFILES = "doctor_profiles"

BOOKING_FIELDS = ("patientId", "patientName", "appointmentType")


def make_schedule_id(doctor_id: str, date_str: str) -> str:
    return f"{doctor_id}-{date_str}"


def default_time_slots(doctor_id: str, date_str: str) -> List[TimeSlot]:
    """The six fixed clinic slots, ids keyed by the hour"""
    return [
        TimeSlot(id=f"{doctor_id}-{date_str}-{time[:2]}", time=time, is_available=True)
        for time in DEFAULT_SLOT_TIMES
    ]


class ScheduleStore:
    """Per-doctor, per-day slot grids and slot booking"""

    def __init__(self, storage: StorageAdapter, bus: Optional[EventBus] = None, days_ahead: int = 30):
        self.storage = storage
        self.bus = bus
        self.days_ahead = days_ahead

    async def _publish(self, change_type: str, data: Any) -> None:
        if self.bus is not None:
            await self.bus.publish(ScheduleChanged(type=change_type, data=data))

    async def get_schedules(self) -> List[DoctorSchedule]:
        """All stored schedules; an empty list when nothing usable is stored"""
        try:
            records = await self.storage.list_records(SCHEDULES)
            if not records:
                logger.debug("[ScheduleStore] No stored schedules found")
                return []

            schedules = [DoctorSchedule.from_dict(r) for r in records]
            logger.debug(f"[ScheduleStore] Loaded {len(schedules)} schedules from storage")
            return schedules

        except Exception as e:
            logger.error(f"[ScheduleStore] Error loading stored schedules: {e}")
            return []

    async def save_schedules(self, schedules: List[DoctorSchedule]) -> None:
        """Replace the whole stored schedule set"""
        await self.storage.replace_collection(SCHEDULES, [s.to_dict() for s in schedules])
        await self._publish("sync", [s.to_dict() for s in schedules])

    async def _active_doctors(self) -> List[DoctorProfile]:
        doctors = []
        try:
            for record in await self.storage.list_records(DOCTOR_PROFILES):
                if (
                    record.get("status") == UserStatus.ACTIVE.value
                    and record.get("id")
                    and record.get("name")
                    and record.get("specialty")
                ):
                    doctors.append(DoctorProfile.from_dict(record))
        except Exception as e:
            logger.error(f"[ScheduleStore] Error reading doctor profiles: {e}")
        return doctors

    async def get_default_schedules(self, today: Optional[date] = None) -> List[DoctorSchedule]:
        """Build a fresh weekday grid for every active doctor.

        Covers the `days_ahead` days starting today and overwrites whatever
        schedules were stored before. With no active doctors nothing is
        written and an empty list is returned.
        """
        doctors = await self._active_doctors()
        if not doctors:
            return []

        today = today or date.today()
        schedules = []
        for date_str in upcoming_weekdays(today, 0, self.days_ahead - 1):
            for doctor in doctors:
                schedules.append(
                    DoctorSchedule(
                        id=make_schedule_id(doctor.id, date_str),
                        doctor_id=doctor.id,
                        doctor_name=doctor.name,
                        specialty=doctor.specialty,
                        date=date_str,
                        time_slots=default_time_slots(doctor.id, date_str),
                    )
                )

        await self.save_schedules(schedules)
        logger.info(f"[ScheduleStore] Generated {len(schedules)} default schedules for {len(doctors)} doctors")
        return schedules

    async def get_schedule_by_doctor_and_date(self, doctor_id: str, date_str: str) -> Optional[DoctorSchedule]:
        schedules = await self.get_schedules()
        return next((s for s in schedules if s.doctor_id == doctor_id and s.date == date_str), None)

    async def get_schedules_by_doctor(self, doctor_id: str) -> List[DoctorSchedule]:
        return [s for s in await self.get_schedules() if s.doctor_id == doctor_id]

    async def get_available_slots(self, doctor_id: str, date_str: str) -> List[TimeSlot]:
        schedule = await self.get_schedule_by_doctor_and_date(doctor_id, date_str)
        return [slot for slot in schedule.time_slots if slot.is_available] if schedule else []

    async def get_doctor_schedule_for_week(self, doctor_id: str, start_date: date) -> List[DoctorSchedule]:
        """The doctor's schedules for the seven days starting at `start_date`"""
        schedules = await self.get_schedules_by_doctor(doctor_id)
        by_date = {s.date: s for s in reversed(schedules)}
        return [by_date[d] for d in week_dates(start_date) if d in by_date]

    async def _modify_slot(self, record_id: str, slot_id: str, change) -> Optional[Dict[str, Any]]:
        """Apply `change(slot_dict)` to one slot under optimistic locking.

        `change` returns False to abort, in which case nothing is written.
        """

        def mutate(record):
            for slot in record.get("timeSlots", []):
                if slot.get("id") == slot_id:
                    return record if change(slot) is not False else None
            return None

        try:
            return await self.storage.modify_record(SCHEDULES, record_id, mutate)
        except ConcurrentUpdateError as e:
            logger.error(f"[ScheduleStore] {e}")
            return None

    async def update_time_slot(
        self,
        schedule_id: str,
        slot_id: str,
        is_available: Optional[bool] = None,
        time: Optional[str] = None,
        patient_id: Optional[str] = None,
        patient_name: Optional[str] = None,
        appointment_type: Optional[str] = None,
    ) -> bool:
        """Manual slot management for admins and doctors.

        Only the given fields change. Making a slot available again drops
        its booking fields.
        """
        patch = {
            "isAvailable": is_available,
            "time": time,
            "patientId": patient_id,
            "patientName": patient_name,
            "appointmentType": appointment_type,
        }
        patch = {k: v for k, v in patch.items() if v is not None}

        def change(slot):
            slot.update(patch)
            if slot.get("isAvailable"):
                for key in BOOKING_FIELDS:
                    slot.pop(key, None)

        record = await self._modify_slot(schedule_id, slot_id, change)
        if record is None:
            return False

        await self._publish("update", record)
        return True

    async def book_time_slot(
        self,
        doctor_id: str,
        date_str: str,
        slot_id: str,
        patient_id: str,
        patient_name: str,
        appointment_type: str,
    ) -> bool:
        """Mark an available slot as booked by the given patient.

        Returns False if the schedule or slot does not exist, or if the slot
        is already taken. Concurrent attempts on the same slot are resolved
        by the storage version check, so exactly one of them wins.
        """
        schedule = await self.get_schedule_by_doctor_and_date(doctor_id, date_str)
        if schedule is None:
            logger.warning(f"[ScheduleStore] No schedule for {doctor_id} on {date_str}")
            return False

        def change(slot):
            if not slot.get("isAvailable"):
                return False
            slot["isAvailable"] = False
            slot["patientId"] = patient_id
            slot["patientName"] = patient_name
            slot["appointmentType"] = appointment_type

        record = await self._modify_slot(schedule.id, slot_id, change)
        if record is None:
            logger.info(f"[ScheduleStore] Slot {slot_id} is not available for booking")
            return False

        logger.info(f"[ScheduleStore] Booked slot {slot_id} for patient {patient_id}")
        await self._publish("update", record)
        return True

    async def release_time_slot(self, doctor_id: str, date_str: str, slot_id: str) -> bool:
        """Make a booked slot available again and drop its booking fields"""
        schedule = await self.get_schedule_by_doctor_and_date(doctor_id, date_str)
        if schedule is None:
            return False

        def change(slot):
            if slot.get("isAvailable"):
                return False
            slot["isAvailable"] = True
            for key in BOOKING_FIELDS:
                slot.pop(key, None)

        record = await self._modify_slot(schedule.id, slot_id, change)
        if record is None:
            return False

        logger.info(f"[ScheduleStore] Released slot {slot_id}")
        await self._publish("update", record)
        return True

    async def create_doctor_schedule(
        self,
        doctor_id: str,
        doctor_name: str,
        specialty: str,
        date_str: str,
        time_slots: List[Dict[str, Any]],
    ) -> DoctorSchedule:
        """Create the schedule for (doctor, date), or return the one that exists.

        `time_slots` are slot dicts without ids; ids are assigned from their
        position in the list.
        """
        existing = await self.get_schedule_by_doctor_and_date(doctor_id, date_str)
        if existing:
            return existing

        schedule = DoctorSchedule(
            id=make_schedule_id(doctor_id, date_str),
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            specialty=specialty,
            date=date_str,
            time_slots=[
                TimeSlot.from_dict({**slot, "id": f"{doctor_id}-{date_str}-{index + 1}"})
                for index, slot in enumerate(time_slots)
            ],
        )

        if not await self.storage.insert_record(SCHEDULES, schedule.to_dict()):
            # Lost a race with another creator; theirs wins
            stored = await self.storage.get_record(SCHEDULES, schedule.id)
            return DoctorSchedule.from_dict(stored) if stored else schedule

        await self._publish("create", schedule.to_dict())
        return schedule

    async def create_schedules_for_doctor(
        self,
        doctor_id: str,
        doctor_name: str,
        specialty: str,
        today: Optional[date] = None,
    ) -> List[DoctorSchedule]:
        """Add default weekday schedules from tomorrow on, skipping dates that already have one"""
        today = today or date.today()
        existing_dates = {s.date for s in await self.get_schedules_by_doctor(doctor_id)}

        created = []
        for date_str in upcoming_weekdays(today, 1, self.days_ahead):
            if date_str in existing_dates:
                continue

            schedule = DoctorSchedule(
                id=make_schedule_id(doctor_id, date_str),
                doctor_id=doctor_id,
                doctor_name=doctor_name,
                specialty=specialty,
                date=date_str,
                time_slots=default_time_slots(doctor_id, date_str),
            )
            if await self.storage.insert_record(SCHEDULES, schedule.to_dict()):
                created.append(schedule)

        logger.info(f"[ScheduleStore] Created {len(created)} schedules for doctor {doctor_id}")
        if created:
            await self._publish("create", [s.to_dict() for s in created])
        return created

    async def delete_schedules_for_doctor(self, doctor_id: str) -> int:
        removed = 0
        for schedule in await self.get_schedules_by_doctor(doctor_id):
            if await self.storage.delete_record(SCHEDULES, schedule.id):
                removed += 1

        if removed:
            await self._publish("delete", {"doctorId": doctor_id, "count": removed})
        return removed
