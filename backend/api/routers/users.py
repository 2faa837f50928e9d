import logging
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_services, require_role
from api.schemas import DoctorCreate, DoctorUpdate, UserCreate, UserUpdate
from core.exceptions import ValidationError
from core.models import Role
from core.services import Services
from core.utils import generate_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["users"])

admin_only = require_role("admin")
staff_only = require_role("admin", "doctor")


@router.get("/users")
async def list_users(services: Services = Depends(get_services), _user=Depends(staff_only)):
    users = await services.data.get_users()
    return {"users": [u.to_dict() for u in users]}


@router.post("/users", status_code=201)
async def create_user(
    user: UserCreate,
    services: Services = Depends(get_services),
    _user=Depends(admin_only),
):
    """Create a new user; a password also registers login credentials"""
    try:
        if await services.data.get_user_by_email(user.email):
            raise ValidationError("User already exists")

        user_id = generate_id("user")
        if user.password and not await services.credentials.register(
            user.email, user.password, user.role, user.name, user_id
        ):
            raise ValidationError("User already exists")

        created = await services.data.create_user(
            user.model_dump(exclude={"password"}, exclude_none=True), user_id=user_id
        )

        return {"user_id": created.id, "user": created.to_dict(), "message": "User created successfully"}

    except ValidationError:
        raise
    except Exception as e:
        logger.error(f"Error creating user: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/users/{user_id}")
async def get_user(user_id: str, services: Services = Depends(get_services), _user=Depends(staff_only)):
    user = await services.data.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_dict()


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    updates: UserUpdate,
    services: Services = Depends(get_services),
    _user=Depends(admin_only),
):
    user = await services.data.update_user(user_id, updates.model_dump(exclude_none=True))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_dict(), "message": "User updated successfully"}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, services: Services = Depends(get_services), _user=Depends(admin_only)):
    if not await services.data.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User deleted successfully"}


@router.get("/doctors")
async def list_doctors(services: Services = Depends(get_services)):
    """Doctor directory, public so the booking form can list it"""
    doctors = await services.data.get_doctor_profiles()
    return {"doctors": [d.to_dict() for d in doctors]}


@router.post("/doctors", status_code=201)
async def create_doctor(
    doctor: DoctorCreate,
    services: Services = Depends(get_services),
    _user=Depends(admin_only),
):
    """Add a doctor together with their user account and default schedules"""
    try:
        if await services.data.get_user_by_email(doctor.email):
            raise ValidationError("User already exists")

        doctor_id = generate_id("doctor")
        if doctor.password and not await services.credentials.register(
            doctor.email, doctor.password, Role.DOCTOR.value, doctor.name, doctor_id
        ):
            raise ValidationError("User already exists")

        created = await services.data.create_doctor_profile(
            doctor.model_dump(exclude={"password"}, exclude_none=True), doctor_id=doctor_id
        )

        return {"doctor_id": created.id, "doctor": created.to_dict(), "message": "Doctor created successfully"}

    except ValidationError:
        raise
    except Exception as e:
        logger.error(f"Error creating doctor: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/doctors/{doctor_id}")
async def update_doctor(
    doctor_id: str,
    updates: DoctorUpdate,
    services: Services = Depends(get_services),
    _user=Depends(admin_only),
):
    doctor = await services.data.update_doctor_profile(doctor_id, updates.model_dump(exclude_none=True))
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return {"doctor": doctor.to_dict(), "message": "Doctor updated successfully"}


@router.delete("/doctors/{doctor_id}")
async def delete_doctor(doctor_id: str, services: Services = Depends(get_services), _user=Depends(admin_only)):
    """Remove a doctor profile and their schedules"""
    if not await services.data.delete_doctor_profile(doctor_id):
        raise HTTPException(status_code=404, detail="Doctor not found")
    return {"message": "Doctor deleted successfully"}
