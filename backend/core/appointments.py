import logging
from typing import Any, Callable, Dict, List, Optional

from core.events import AppointmentChanged, EventBus
from core.exceptions import ConcurrentUpdateError, InvalidTransitionError
from core.models import Appointment, AppointmentStatus, can_transition
from core.storage import StorageAdapter
from core.utils import generate_id, now_iso

logger = logging.getLogger(__name__)

APPOINTMENTS = "appointments"

CANCELLATION_PREFIX = "Cancelled: "


class AppointmentStore:
    """Appointment records and their status changes.

    Independent of the ScheduleStore: cancelling or rejecting an appointment
    leaves its time slot booked. Slots are released through the schedule
    endpoints by an admin.
    """

    def __init__(self, storage: StorageAdapter, bus: Optional[EventBus] = None):
        self.storage = storage
        self.bus = bus

    async def _publish(self, change_type: str, data: Any) -> None:
        if self.bus is not None:
            await self.bus.publish(AppointmentChanged(type=change_type, data=data))

    async def get_all_appointments(self) -> List[Appointment]:
        try:
            return [Appointment.from_dict(r) for r in await self.storage.list_records(APPOINTMENTS)]
        except Exception as e:
            logger.error(f"[AppointmentStore] Error loading appointments: {e}")
            return []

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        record = await self.storage.get_record(APPOINTMENTS, appointment_id)
        return Appointment.from_dict(record) if record else None

    async def get_appointments_by_patient(self, patient_email: str) -> List[Appointment]:
        return [a for a in await self.get_all_appointments() if a.patient_email == patient_email]

    async def get_appointments_by_doctor(self, doctor_id: str) -> List[Appointment]:
        return [a for a in await self.get_all_appointments() if a.doctor_id == doctor_id]

    async def get_pending_appointments(self) -> List[Appointment]:
        return [
            a for a in await self.get_all_appointments()
            if a.status == AppointmentStatus.PENDING.value
        ]

    async def create_appointment(self, data: Dict[str, Any]) -> Appointment:
        """Persist a new appointment from camelCase fields (no id/createdAt)"""
        appointment = Appointment.from_dict(
            {
                "status": AppointmentStatus.PENDING.value,
                **data,
                "id": generate_id("apt", with_suffix=False),
                "createdAt": now_iso(),
            }
        )

        await self.storage.insert_record(APPOINTMENTS, appointment.to_dict())
        logger.info(f"[AppointmentStore] Created appointment {appointment.id}")

        await self._publish("create", appointment.to_dict())
        return appointment

    async def _update(
        self,
        appointment_id: str,
        changes: Dict[str, Any],
        check: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Optional[Appointment]:
        def mutate(record):
            if check is not None:
                check(record)
            record.update(changes)
            record["updatedAt"] = now_iso()
            return record

        try:
            record = await self.storage.modify_record(APPOINTMENTS, appointment_id, mutate)
        except ConcurrentUpdateError as e:
            logger.error(f"[AppointmentStore] {e}")
            return None

        if record is None:
            logger.warning(f"[AppointmentStore] Appointment {appointment_id} not found")
            return None

        await self._publish("update", record)
        return Appointment.from_dict(record)

    async def update_appointment_status(
        self, appointment_id: str, status: str, notes: Optional[str] = None
    ) -> bool:
        """Set the status (and notes, when given). False if the id is unknown."""
        changes = {"status": AppointmentStatus(status).value}
        if notes:
            changes["notes"] = notes

        updated = await self._update(appointment_id, changes)
        if updated:
            logger.info(f"[AppointmentStore] Updated appointment status: {appointment_id} {status}")
        return updated is not None

    async def transition_appointment(
        self, appointment_id: str, target: str, notes: Optional[str] = None
    ) -> Optional[Appointment]:
        """Move to `target` if the stored status allows it.

        The check runs against the record being written, so of two
        conflicting transitions only one can win; the other raises
        InvalidTransitionError. None if the id is unknown.
        """
        target = AppointmentStatus(target).value
        if target == AppointmentStatus.CANCELLED.value and notes:
            notes = f"{CANCELLATION_PREFIX}{notes}"

        changes = {"status": target}
        if notes:
            changes["notes"] = notes

        def check(record):
            if not can_transition(record.get("status"), target):
                raise InvalidTransitionError(record.get("status"), target)

        updated = await self._update(appointment_id, changes, check=check)
        if updated:
            logger.info(f"[AppointmentStore] Appointment {appointment_id} moved to {target}")
        return updated

    async def approve_appointment(self, appointment_id: str) -> bool:
        return await self.update_appointment_status(appointment_id, AppointmentStatus.APPROVED.value)

    async def reject_appointment(self, appointment_id: str) -> bool:
        return await self.update_appointment_status(appointment_id, AppointmentStatus.REJECTED.value)

    async def complete_appointment(self, appointment_id: str) -> bool:
        return await self.update_appointment_status(appointment_id, AppointmentStatus.COMPLETED.value)

    async def cancel_appointment(self, appointment_id: str, reason: Optional[str] = None) -> bool:
        notes = f"{CANCELLATION_PREFIX}{reason}" if reason else None
        return await self.update_appointment_status(
            appointment_id, AppointmentStatus.CANCELLED.value, notes
        )

    async def reschedule_appointment(self, appointment_id: str, new_date: str, new_time: str) -> bool:
        """Move the appointment; it goes back to pending for re-approval"""
        updated = await self._update(
            appointment_id,
            {"date": new_date, "time": new_time, "status": AppointmentStatus.PENDING.value},
        )
        if updated:
            logger.info(f"[AppointmentStore] Rescheduled appointment {appointment_id} to {new_date} {new_time}")
        return updated is not None

    async def delete_appointment(self, appointment_id: str) -> bool:
        deleted = await self.storage.delete_record(APPOINTMENTS, appointment_id)
        if deleted:
            await self._publish("delete", {"id": appointment_id})
        return deleted

    async def get_appointment_stats(self) -> Dict[str, int]:
        appointments = await self.get_all_appointments()
        stats = {"total": len(appointments)}
        for status in ("pending", "approved", "completed", "cancelled"):
            stats[status] = sum(1 for a in appointments if a.status == status)
        return stats
