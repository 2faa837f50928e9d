import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, get_session_user, require_role, user_key
from api.schemas import (
    ClinicalNoteCreate,
    ClinicalNoteUpdate,
    MedicalRecordCreate,
    MedicalRecordUpdate,
)
from core.models import Role, SessionUser
from core.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["records"])

staff_only = require_role("admin", "doctor")


# Medical records
@router.get("/medical-records")
async def list_medical_records(
    patient_id: Optional[str] = None,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(get_session_user),
):
    """Patients only ever see their own records"""
    if user.role == Role.PATIENT.value:
        patient_id = user_key(user)
    records = await services.data.get_medical_records(patient_id)
    return {"records": [r.to_dict() for r in records]}


@router.post("/medical-records", status_code=201)
async def create_medical_record(
    record: MedicalRecordCreate,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(staff_only),
):
    try:
        data = record.model_dump(exclude_none=True)
        if user.role == Role.DOCTOR.value:
            data.setdefault("doctorId", user_key(user))
        created = await services.data.create_medical_record(data)
        return {"record_id": created.id, "record": created.to_dict()}

    except Exception as e:
        logger.error(f"Error creating medical record: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/medical-records/{record_id}")
async def update_medical_record(
    record_id: str,
    updates: MedicalRecordUpdate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    record = await services.data.update_medical_record(record_id, updates.model_dump(exclude_none=True))
    if not record:
        raise HTTPException(status_code=404, detail="Medical record not found")
    return {"record": record.to_dict()}


@router.delete("/medical-records/{record_id}")
async def delete_medical_record(
    record_id: str,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    if not await services.data.delete_medical_record(record_id):
        raise HTTPException(status_code=404, detail="Medical record not found")
    return {"message": "Medical record deleted"}


# Clinical notes
@router.get("/clinical-notes")
async def list_clinical_notes(
    patient_id: Optional[str] = None,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(staff_only),
):
    """Doctors see the notes they wrote; admins see all"""
    doctor_id = user_key(user) if user.role == Role.DOCTOR.value else None
    notes = await services.data.get_clinical_notes(doctor_id=doctor_id, patient_id=patient_id)
    return {"notes": [n.to_dict() for n in notes]}


@router.post("/clinical-notes", status_code=201)
async def create_clinical_note(
    note: ClinicalNoteCreate,
    services: Services = Depends(get_services),
    user: SessionUser = Depends(require_role("doctor")),
):
    try:
        created = await services.data.create_clinical_note(
            {**note.model_dump(exclude_none=True), "doctorId": user_key(user)}
        )
        return {"note_id": created.id, "note": created.to_dict()}

    except Exception as e:
        logger.error(f"Error creating clinical note: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/clinical-notes/{note_id}")
async def update_clinical_note(
    note_id: str,
    updates: ClinicalNoteUpdate,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    note = await services.data.update_clinical_note(note_id, updates.model_dump(exclude_none=True))
    if not note:
        raise HTTPException(status_code=404, detail="Clinical note not found")
    return {"note": note.to_dict()}


@router.delete("/clinical-notes/{note_id}")
async def delete_clinical_note(
    note_id: str,
    services: Services = Depends(get_services),
    _user=Depends(staff_only),
):
    if not await services.data.delete_clinical_note(note_id):
        raise HTTPException(status_code=404, detail="Clinical note not found")
    return {"message": "Clinical note deleted"}
