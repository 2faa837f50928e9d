from typing import Optional, List, Literal
from pydantic import BaseModel, EmailStr, Field

RoleName = Literal["admin", "doctor", "patient"]
StatusName = Literal["pending", "approved", "rejected", "completed", "cancelled"]


class LoginRequest(BaseModel):
    email: str
    password: str


class PatientRegistration(BaseModel):
    firstName: str
    lastName: str
    email: str
    password: str
    confirmPassword: str
    phone: str
    nik: Optional[str] = None
    dateOfBirth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    emergencyContactName: Optional[str] = None
    emergencyContactPhone: Optional[str] = None
    emergencyContactRelation: Optional[str] = None


class UserCreate(BaseModel):
    name: str
    email: EmailStr
    role: RoleName = "patient"
    status: Literal["active", "inactive"] = "active"
    password: Optional[str] = Field(default=None, min_length=6)
    profile: Optional[dict] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[RoleName] = None
    status: Optional[Literal["active", "inactive"]] = None
    profile: Optional[dict] = None


class DoctorCreate(BaseModel):
    name: str
    email: EmailStr
    specialty: str
    phone: Optional[str] = None
    licenseNumber: Optional[str] = None
    status: Literal["active", "inactive"] = "active"
    password: Optional[str] = Field(default=None, min_length=6)


class DoctorUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    specialty: Optional[str] = None
    phone: Optional[str] = None
    licenseNumber: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


class TimeSlotInput(BaseModel):
    time: str
    isAvailable: bool = True


class ScheduleCreate(BaseModel):
    doctorId: str
    doctorName: str
    specialty: str
    date: str
    timeSlots: List[TimeSlotInput]


class TimeSlotUpdate(BaseModel):
    isAvailable: Optional[bool] = None
    time: Optional[str] = None
    patientId: Optional[str] = None
    patientName: Optional[str] = None
    appointmentType: Optional[str] = None


class SlotBooking(BaseModel):
    doctorId: str
    date: str
    slotId: str
    patientId: str
    patientName: str
    appointmentType: str


class SlotRelease(BaseModel):
    doctorId: str
    date: str
    slotId: str


class AppointmentCreate(BaseModel):
    patientId: str
    patientName: str
    patientEmail: EmailStr
    doctorId: str
    doctorName: str
    date: str
    time: str
    type: str
    status: StatusName = "pending"
    notes: Optional[str] = None
    complaints: Optional[str] = None


class BookingRequest(BaseModel):
    doctorId: str
    date: str
    slotId: str
    type: str = "General consultation"
    notes: Optional[str] = None
    complaints: Optional[str] = None


class StatusUpdate(BaseModel):
    status: StatusName
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    date: str
    time: str


class MedicalRecordCreate(BaseModel):
    patientId: str
    doctorId: Optional[str] = None
    title: str
    description: str
    date: str
    type: Literal["diagnosis", "treatment", "test_result", "prescription", "note"] = "note"
    attachments: Optional[List[str]] = None


class MedicalRecordUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    type: Optional[Literal["diagnosis", "treatment", "test_result", "prescription", "note"]] = None
    attachments: Optional[List[str]] = None


class MessageCreate(BaseModel):
    receiverId: str
    subject: str
    content: str
    type: Literal["general", "appointment", "medical", "system"] = "general"


class ClinicalNoteCreate(BaseModel):
    patientId: str
    appointmentId: Optional[str] = None
    diagnosis: str
    treatment: str
    notes: str
    followUp: Optional[str] = None


class ClinicalNoteUpdate(BaseModel):
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    followUp: Optional[str] = None
