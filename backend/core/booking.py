import logging
from typing import Optional

from core.appointments import AppointmentStore
from core.data_manager import DataManager
from core.exceptions import SlotUnavailableError
from core.models import Appointment, AppointmentStatus, SessionUser
from core.schedule import ScheduleStore
from core.utils import format_appointment_details

logger = logging.getLogger(__name__)


class BookingService:
    """Patient booking: claim a schedule slot, then file a pending appointment"""

    def __init__(self, schedules: ScheduleStore, appointments: AppointmentStore, data: DataManager):
        self.schedules = schedules
        self.appointments = appointments
        self.data = data

    async def book_appointment(
        self,
        patient: SessionUser,
        doctor_id: str,
        date: str,
        slot_id: str,
        appointment_type: str,
        notes: Optional[str] = None,
        complaints: Optional[str] = None,
    ) -> Appointment:
        schedule = await self.schedules.get_schedule_by_doctor_and_date(doctor_id, date)
        slot = schedule.find_slot(slot_id) if schedule else None
        if slot is None:
            raise SlotUnavailableError("Selected time slot does not exist")

        patient_id = patient.id or patient.email
        booked = await self.schedules.book_time_slot(
            doctor_id, date, slot_id, patient_id, patient.name, appointment_type
        )
        if not booked:
            raise SlotUnavailableError("Selected time slot is no longer available")

        try:
            appointment = await self.appointments.create_appointment(
                {
                    "patientId": patient_id,
                    "patientName": patient.name,
                    "patientEmail": patient.email,
                    "doctorId": doctor_id,
                    "doctorName": schedule.doctor_name,
                    "date": date,
                    "time": slot.time,
                    "type": appointment_type,
                    "status": AppointmentStatus.PENDING.value,
                    "notes": notes,
                    "complaints": complaints,
                }
            )
        except Exception as e:
            logger.error(f"[Booking] Could not file appointment for slot {slot_id}, releasing it: {e}")
            await self.schedules.release_time_slot(doctor_id, date, slot_id)
            raise

        logger.info(f"[Booking] {patient.email}: {format_appointment_details(appointment.to_dict())}")
        await self.data.sync_appointment_data()
        return appointment
