"""
schemas.py
==========
Pydantic models used for validating incoming requests and
structuring outgoing API responses.

Field names on the wire are camelCase (`doctorId`, `dateOfAdm`, `maxCap`);
requests may also use the snake_case attribute names.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

from .models import BloodGroup, PaymentStatus, Role, WardType


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StampedOut(WireModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# AUTH / USERS
# ---------------------------------------------------------------------------

class RegisterRequest(WireModel):
    """Request body for creating an account."""
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    cell_no: Optional[str] = Field(default=None, max_length=32)
    role: Role
    security_question: str = Field(min_length=1)
    security_answer: str = Field(min_length=1)


class LoginRequest(WireModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(WireModel):
    email: EmailStr
    security_question: str
    security_answer: str


class ResetPasswordRequest(WireModel):
    reset_token: str
    new_password: str = Field(min_length=6)


class UserPatch(WireModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    cell_no: Optional[str] = Field(default=None, max_length=32)
    role: Optional[Role] = None
    security_question: Optional[str] = Field(default=None, min_length=1)


class UserOut(StampedOut):
    id: int
    first_name: str
    last_name: str
    email: str
    cell_no: Optional[str] = None
    role: Role
    security_question: str


class TokenResponse(WireModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


# ---------------------------------------------------------------------------
# EMPLOYEES / DOCTORS
# ---------------------------------------------------------------------------

class EmployeeIn(WireModel):
    user_id: int
    dob: date
    hire_date: date
    salary: float = Field(ge=0)


class EmployeePatch(WireModel):
    user_id: Optional[int] = None
    dob: Optional[date] = None
    hire_date: Optional[date] = None
    salary: Optional[float] = Field(default=None, ge=0)


class EmployeeOut(StampedOut):
    id: int
    user_id: int
    dob: date
    hire_date: date
    salary: float


class DoctorIn(WireModel):
    emp_id: int
    charges: float = Field(ge=0)


class DoctorPatch(WireModel):
    emp_id: Optional[int] = None
    charges: Optional[float] = Field(default=None, ge=0)


class DoctorOut(StampedOut):
    id: int
    emp_id: int
    charges: float


class DoctorSummary(WireModel):
    id: int
    emp_id: int
    charges: float


# ---------------------------------------------------------------------------
# PATIENTS
# ---------------------------------------------------------------------------

class PatientIn(WireModel):
    user_id: int
    ward_id: Optional[int] = None
    doctor_id: int
    date_of_admission: date = Field(alias="dateOfAdm")
    blood_group: BloodGroup
    dob: date
    prescription: Optional[str] = None
    bed_allocated: Optional[int] = Field(default=None, ge=0)
    payment_status: PaymentStatus = PaymentStatus.pending
    patient_problem: str = Field(min_length=1)


class PatientPatch(WireModel):
    user_id: Optional[int] = None
    ward_id: Optional[int] = None
    doctor_id: Optional[int] = None
    date_of_admission: Optional[date] = Field(default=None, alias="dateOfAdm")
    blood_group: Optional[BloodGroup] = None
    dob: Optional[date] = None
    prescription: Optional[str] = None
    bed_allocated: Optional[int] = Field(default=None, ge=0)
    payment_status: Optional[PaymentStatus] = None
    patient_problem: Optional[str] = Field(default=None, min_length=1)


class PatientOut(StampedOut):
    id: int
    user_id: int
    ward_id: Optional[int] = None
    doctor_id: int
    date_of_admission: date = Field(alias="dateOfAdm")
    blood_group: BloodGroup
    dob: date
    prescription: Optional[str] = None
    bed_allocated: Optional[int] = None
    payment_status: PaymentStatus
    patient_problem: str


class PatientSummary(WireModel):
    id: int
    user_id: int
    patient_problem: str


# ---------------------------------------------------------------------------
# WARDS / MEDICINES
# ---------------------------------------------------------------------------

class WardIn(WireModel):
    type: WardType
    charges: float = Field(ge=0)
    availability: bool = True
    max_capacity: int = Field(ge=0, alias="maxCap")
    current_occupancy: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_capacity(self):
        if self.current_occupancy > self.max_capacity:
            raise ValueError("currentOccupancy cannot exceed maxCap")
        return self


class WardPatch(WireModel):
    type: Optional[WardType] = None
    charges: Optional[float] = Field(default=None, ge=0)
    availability: Optional[bool] = None
    max_capacity: Optional[int] = Field(default=None, ge=0, alias="maxCap")
    current_occupancy: Optional[int] = Field(default=None, ge=0)


class WardOut(StampedOut):
    id: int
    type: WardType
    charges: float
    availability: bool
    max_capacity: int = Field(alias="maxCap")
    current_occupancy: int


class MedicineIn(WireModel):
    name: str = Field(min_length=1, max_length=255)
    price: float = Field(ge=0)


class MedicinePatch(WireModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    price: Optional[float] = Field(default=None, ge=0)


class MedicineOut(StampedOut):
    id: int
    name: str
    price: float


class MedicineSummary(WireModel):
    id: int
    name: str
    price: float


# ---------------------------------------------------------------------------
# DOCTOR VISITS / MEDICINE ASSIGNMENTS
# ---------------------------------------------------------------------------

class VisitIn(WireModel):
    pat_id: int
    doctor_id: int
    visits: int = Field(default=1, ge=1)
    visit_date: Optional[date] = None
    remarks: Optional[str] = None


class VisitPatch(WireModel):
    visits: Optional[int] = Field(default=None, ge=1)
    visit_date: Optional[date] = None
    remarks: Optional[str] = None


class VisitOut(StampedOut):
    id: int
    pat_id: int
    doctor_id: int
    visits: int
    visit_date: date
    remarks: Optional[str] = None
    patient: Optional[PatientSummary] = None
    doctor: Optional[DoctorSummary] = None


class AssignmentIn(WireModel):
    pat_id: int
    medicine_id: int
    prescription: str = Field(min_length=1)
    medicine_qty: int = Field(ge=1)


class AssignmentPatch(WireModel):
    prescription: Optional[str] = Field(default=None, min_length=1)
    medicine_qty: Optional[int] = Field(default=None, ge=1)


class AssignmentOut(StampedOut):
    id: int
    pat_id: int
    medicine_id: int
    prescription: str
    medicine_qty: int
    patient: Optional[PatientSummary] = None
    medicine: Optional[MedicineSummary] = None
