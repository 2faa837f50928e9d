import logging
from datetime import date as date_type
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, get_session_user, require_role
from api.schemas import ScheduleCreate, SlotBooking, SlotRelease, TimeSlotUpdate
from core.exceptions import PortalError
from core.services import Services
from core.utils import normalize_date, parse_date

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/schedules", tags=["schedules"])

staff_only = require_role("admin", "doctor")


def _date_or_400(value: str) -> str:
    normalized = normalize_date(value)
    if not normalized:
        raise HTTPException(status_code=400, detail=f"Could not understand date '{value}'")
    return normalized


@router.get("")
async def list_schedules(
    doctor_id: Optional[str] = None,
    date: Optional[str] = None,
    services: Services = Depends(get_services),
    _user=Depends(get_session_user),
):
    """List schedules, optionally for one doctor and/or one day"""
    try:
        schedules = await services.schedules.get_schedules()
        if doctor_id:
            schedules = [s for s in schedules if s.doctor_id == doctor_id]
        if date:
            day = _date_or_400(date)
            schedules = [s for s in schedules if s.date == day]
        return {"schedules": [s.to_dict() for s in schedules]}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing schedules: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/default")
async def generate_default_schedules(
    services: Services = Depends(get_services),
    _user=Depends(require_role("admin")),
):
    """Regenerate the 30-day grid for all active doctors (replaces existing schedules)"""
    schedules = await services.schedules.get_default_schedules()
    return {"count": len(schedules), "schedules": [s.to_dict() for s in schedules]}


@router.post("", status_code=201)
async def create_schedule(
    payload: ScheduleCreate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    """Create one doctor's schedule for a day, or return the existing one"""
    try:
        schedule = await services.schedules.create_doctor_schedule(
            payload.doctorId,
            payload.doctorName,
            payload.specialty,
            _date_or_400(payload.date),
            [slot.model_dump() for slot in payload.timeSlots],
        )
        return schedule.to_dict()

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating schedule: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{doctor_id}/{date}/slots")
async def get_available_slots(
    doctor_id: str,
    date: str,
    services: Services = Depends(get_services),
    _user=Depends(get_session_user),
):
    """Get available slots for a doctor on a date"""
    day = _date_or_400(date)
    slots = await services.schedules.get_available_slots(doctor_id, day)
    return {"doctorId": doctor_id, "date": day, "availableSlots": [s.to_dict() for s in slots]}


@router.get("/{doctor_id}/week")
async def get_week(
    doctor_id: str,
    start: Optional[str] = None,
    services: Services = Depends(get_services),
    _user=Depends(get_session_user),
):
    """A doctor's schedules for the seven days from `start` (default today)"""
    start_date = parse_date(_date_or_400(start)) if start else date_type.today()
    schedules = await services.schedules.get_doctor_schedule_for_week(doctor_id, start_date)
    return {"schedules": [s.to_dict() for s in schedules]}


@router.patch("/{schedule_id}/slots/{slot_id}")
async def update_slot(
    schedule_id: str,
    slot_id: str,
    payload: TimeSlotUpdate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    """Manually change a slot"""
    updated = await services.schedules.update_time_slot(
        schedule_id,
        slot_id,
        is_available=payload.isAvailable,
        time=payload.time,
        patient_id=payload.patientId,
        patient_name=payload.patientName,
        appointment_type=payload.appointmentType,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Schedule or slot not found")
    return {"message": "Slot updated successfully"}


@router.post("/book")
async def book_slot(
    payload: SlotBooking,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    """Book a slot directly, without filing an appointment"""
    try:
        booked = await services.schedules.book_time_slot(
            payload.doctorId,
            _date_or_400(payload.date),
            payload.slotId,
            payload.patientId,
            payload.patientName,
            payload.appointmentType,
        )
        if not booked:
            raise HTTPException(status_code=409, detail="Time slot already booked")
        return {"message": "Slot booked successfully"}

    except (HTTPException, PortalError):
        raise
    except Exception as e:
        logger.error(f"Error booking slot: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/release")
async def release_slot(
    payload: SlotRelease,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    """Free a booked slot; cancelling an appointment does not do this by itself"""
    released = await services.schedules.release_time_slot(
        payload.doctorId, _date_or_400(payload.date), payload.slotId
    )
    if not released:
        raise HTTPException(status_code=404, detail="No booked slot found")
    return {"message": "Slot released successfully"}
