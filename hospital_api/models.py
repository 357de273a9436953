"""
models.py
=========
SQLAlchemy ORM models for the hospital records API.
Contains tables for:
 - User
 - Employee
 - Doctor
 - Patient
 - Ward
 - Medicine
 - DoctorVisit
 - MedicineAssignment

Every table has an internal autoincrement key (`_id`) and a separate
sequential business `id` assigned by the coordinator.
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Enum, Float, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
import datetime
import enum

# SQLAlchemy Base class
Base = declarative_base()

# ---------------------------------------------------------------------------
# ENUM DEFINITIONS (wire-level vocabulary, values must not change)
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Account roles."""
    admin = "admin"
    doctor = "doctor"
    patient = "patient"
    employee = "employee"


class BloodGroup(str, enum.Enum):
    a_pos = "A+"
    a_neg = "A-"
    b_pos = "B+"
    b_neg = "B-"
    ab_pos = "AB+"
    ab_neg = "AB-"
    o_pos = "O+"
    o_neg = "O-"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    partial = "partial"


class WardType(str, enum.Enum):
    general = "general"
    private = "private"
    icu = "icu"
    emergency = "emergency"


def _enum(enum_cls):
    # persist the wire value ("A+"), not the member name ("a_pos")
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
    )


class TimestampMixin:
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)


# ---------------------------------------------------------------------------
# TABLE DEFINITIONS
# ---------------------------------------------------------------------------

class User(TimestampMixin, Base):
    """Login account; password and security answer are stored hashed."""
    __tablename__ = "users"

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    cell_no = Column(String, nullable=True)
    role = Column(_enum(Role), nullable=False)
    security_question = Column(String, nullable=False)
    security_answer_hash = Column(String, nullable=False)


class Employee(TimestampMixin, Base):
    """Staff record, one per user."""
    __tablename__ = "employees"

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    user_id = Column(Integer, unique=True, nullable=False)
    dob = Column(Date, nullable=False)
    hire_date = Column(Date, nullable=False)
    salary = Column(Float, nullable=False)


class Doctor(TimestampMixin, Base):
    """Doctor profile, one per employee."""
    __tablename__ = "doctors"

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    emp_id = Column(Integer, unique=True, nullable=False)
    charges = Column(Float, nullable=False)


class Patient(TimestampMixin, Base):
    """Admitted patient with attending doctor and optional ward/bed."""
    __tablename__ = "patients"

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    ward_id = Column(Integer, nullable=True, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    date_of_admission = Column(Date, nullable=False)
    blood_group = Column(_enum(BloodGroup), nullable=False)
    dob = Column(Date, nullable=False)
    prescription = Column(Text, nullable=True)
    bed_allocated = Column(Integer, nullable=True)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.pending)
    patient_problem = Column(Text, nullable=False)


class Ward(TimestampMixin, Base):
    """Ward with capacity tracking."""
    __tablename__ = "wards"
    __table_args__ = (
        CheckConstraint("current_occupancy >= 0", name="ck_ward_occupancy_non_negative"),
        CheckConstraint("current_occupancy <= max_capacity", name="ck_ward_occupancy_capacity"),
    )

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    type = Column(_enum(WardType), nullable=False)
    charges = Column(Float, nullable=False)
    availability = Column(Boolean, nullable=False, default=True)
    max_capacity = Column(Integer, nullable=False)
    current_occupancy = Column(Integer, nullable=False, default=0)


class Medicine(TimestampMixin, Base):
    __tablename__ = "medicines"

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)


class DoctorVisit(TimestampMixin, Base):
    """A doctor's visits to a patient on one day."""
    __tablename__ = "doctor_visits"
    __table_args__ = (
        UniqueConstraint("pat_id", "doctor_id", "visit_date", name="uq_visit_patient_doctor_date"),
    )

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    pat_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    visits = Column(Integer, nullable=False, default=1)
    visit_date = Column(Date, nullable=False, default=datetime.date.today)
    remarks = Column(Text, nullable=True)


class MedicineAssignment(TimestampMixin, Base):
    """Medicine prescribed to a patient; quantity accumulates per pair."""
    __tablename__ = "medicine_assignments"
    __table_args__ = (
        UniqueConstraint("pat_id", "medicine_id", name="uq_assignment_patient_medicine"),
        CheckConstraint("medicine_qty >= 1", name="ck_assignment_qty_positive"),
    )

    pk = Column("_id", Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, unique=True, nullable=False)
    pat_id = Column(Integer, nullable=False, index=True)
    medicine_id = Column(Integer, nullable=False, index=True)
    prescription = Column(Text, nullable=False)
    medicine_qty = Column(Integer, nullable=False)
