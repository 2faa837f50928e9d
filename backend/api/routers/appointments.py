import logging
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, get_session_user, require_role, user_key
from api.schemas import (
    AppointmentCreate,
    BookingRequest,
    CancelRequest,
    RescheduleRequest,
    StatusUpdate,
)
from core.exceptions import PortalError, RecordNotFoundError
from core.models import Appointment, Role, SessionUser
from core.services import Services
from core.utils import normalize_date, normalize_time

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["appointments"])

staff_only = require_role("admin", "doctor")


async def _get_or_404(services: Services, appointment_id: str) -> Appointment:
    appointment = await services.appointments.get_appointment(appointment_id)
    if not appointment:
        raise RecordNotFoundError("Appointment not found")
    return appointment


async def _transition(services: Services, appointment_id: str, target: str, notes=None) -> dict:
    updated = await services.appointments.transition_appointment(appointment_id, target, notes)
    if updated is None:
        raise RecordNotFoundError("Appointment not found")

    await services.data.sync_appointment_data()
    return {"message": f"Appointment {target}", "appointment": updated.to_dict()}


@router.get("/appointments")
async def list_appointments(
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    """Appointments visible to the caller: own for patients, own schedule for doctors, all for admins"""
    try:
        if user.role == Role.PATIENT.value:
            appointments = await services.appointments.get_appointments_by_patient(user.email)
        elif user.role == Role.DOCTOR.value:
            appointments = await services.appointments.get_appointments_by_doctor(user_key(user))
        else:
            appointments = await services.appointments.get_all_appointments()
        return {"appointments": [a.to_dict() for a in appointments]}

    except Exception as e:
        logger.error(f"Error getting appointments: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/appointments/stats")
async def appointment_stats(services: Services = Depends(get_services), _user=Depends(staff_only)):
    return await services.appointments.get_appointment_stats()


@router.get("/appointments/pending")
async def pending_appointments(services: Services = Depends(get_services), _user=Depends(staff_only)):
    appointments = await services.appointments.get_pending_appointments()
    return {"appointments": [a.to_dict() for a in appointments]}


@router.get("/appointments/{appointment_id}")
async def get_appointment(
    appointment_id: str,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    appointment = await _get_or_404(services, appointment_id)
    if user.role == Role.PATIENT.value and appointment.patient_email != user.email:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment.to_dict()


@router.post("/appointments", status_code=201)
async def create_appointment(
    appointment: AppointmentCreate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    """File an appointment directly (no slot is booked)"""
    try:
        created = await services.appointments.create_appointment(
            appointment.model_dump(exclude_none=True)
        )
        await services.data.sync_appointment_data()
        return {"appointment_id": created.id, "appointment": created.to_dict(),
                "message": "Appointment created successfully"}

    except Exception as e:
        logger.error(f"Error creating appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/bookings", status_code=201)
async def book_appointment(
    booking: BookingRequest,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(require_role("patient")),
):
    """Book a schedule slot and file a pending appointment for it"""
    try:
        date = normalize_date(booking.date)
        if not date:
            raise HTTPException(status_code=400, detail=f"Could not understand date '{booking.date}'")

        appointment = await services.booking.book_appointment(
            user,
            booking.doctorId,
            date,
            booking.slotId,
            booking.type,
            notes=booking.notes,
            complaints=booking.complaints,
        )
        return {"appointment_id": appointment.id, "appointment": appointment.to_dict(),
                "message": "Appointment booked successfully"}

    except (HTTPException, PortalError):
        raise
    except Exception as e:
        logger.error(f"Error booking appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/appointments/{appointment_id}/approve")
async def approve_appointment(appointment_id: str, services: Services = Depends(get_services),
                              _user=Depends(staff_only)):
    return await _transition(services, appointment_id, "approved")


@router.post("/appointments/{appointment_id}/reject")
async def reject_appointment(appointment_id: str, services: Services = Depends(get_services),
                             _user=Depends(staff_only)):
    return await _transition(services, appointment_id, "rejected")


@router.post("/appointments/{appointment_id}/complete")
async def complete_appointment(appointment_id: str, services: Services = Depends(get_services),
                               _user=Depends(staff_only)):
    return await _transition(services, appointment_id, "completed")


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    payload: CancelRequest,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    """Cancel an appointment; the booked slot stays booked"""
    appointment = await _get_or_404(services, appointment_id)
    if user.role == Role.PATIENT.value and appointment.patient_email != user.email:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return await _transition(services, appointment_id, "cancelled", payload.reason)


@router.put("/appointments/{appointment_id}/status")
async def update_status(
    appointment_id: str,
    update: StatusUpdate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    return await _transition(services, appointment_id, update.status, update.notes)


@router.post("/appointments/{appointment_id}/reschedule")
async def reschedule_appointment(
    appointment_id: str,
    payload: RescheduleRequest,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    """Move an appointment; it returns to pending for re-approval"""
    try:
        appointment = await _get_or_404(services, appointment_id)
        if user.role == Role.PATIENT.value and appointment.patient_email != user.email:
            raise HTTPException(status_code=404, detail="Appointment not found")

        new_date = normalize_date(payload.date)
        new_time = normalize_time(payload.time)
        if not new_date or not new_time:
            raise HTTPException(status_code=400, detail="Could not understand the new date or time")

        if not await services.appointments.reschedule_appointment(appointment_id, new_date, new_time):
            raise HTTPException(status_code=404, detail="Appointment not found")

        await services.data.sync_appointment_data()
        return {"message": "Appointment rescheduled successfully",
                "appointment": (await _get_or_404(services, appointment_id)).to_dict()}

    except (HTTPException, PortalError):
        raise
    except Exception as e:
        logger.error(f"Error rescheduling appointment: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/appointments/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    services: Services = Depends(get_services),
    _user=Depends(require_role("admin")),
):
    if not await services.appointments.delete_appointment(appointment_id):
        raise HTTPException(status_code=404, detail="Appointment not found")
    await services.data.sync_appointment_data()
    return {"message": "Appointment deleted successfully"}
