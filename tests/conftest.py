"""
conftest.py
===========
Shared fixtures: an isolated temporary SQLite database per test and
coordinators acting as different roles.
"""

import sys, os
# Ensure the hospital_api package is discoverable when running from /tests
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dataclasses import replace

import pytest

from hospital_api.config import Settings
from hospital_api.coordinator import HospitalRecordCoordinator
from hospital_api.db import Database
from hospital_api.models import Base
from hospital_api.schemas import (
    DoctorIn, EmployeeIn, MedicineIn, PatientIn, RegisterRequest, WardIn,
)
from hospital_api.security import CurrentUser


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'hms.db'}", secret_key="test-secret")


@pytest.fixture
def db(settings):
    """Fresh schema in a temporary file, closed after the test."""
    database = Database(settings)
    database.init_db(Base)
    session = database.SessionLocal()
    yield session
    session.close()
    database.dispose()


@pytest.fixture
def as_role(db, settings):
    """Factory: coordinator for a caller with the given role."""
    def make(role, user_id=1, **overrides):
        current = replace(settings, **overrides)
        return HospitalRecordCoordinator(db, current, CurrentUser(user_id=user_id, role=role))
    return make


@pytest.fixture
def admin(as_role):
    return as_role("admin")


def _register(hc, email, role="patient", password="secret123"):
    return hc.register_user(RegisterRequest(
        first_name="Test",
        last_name=role.title(),
        email=email,
        password=password,
        cell_no="555-0100",
        role=role,
        security_question="First pet?",
        security_answer="Rex",
    ))


@pytest.fixture
def register():
    return _register


@pytest.fixture
def records(admin):
    """
    A small hospital: one doctor (user -> employee -> doctor),
    one patient, one medicine and one ward.
    """
    doctor_user = _register(admin, "doc@hospital.org", role="doctor")
    patient_user = _register(admin, "pat@hospital.org", role="patient")
    employee = admin.create_employee(EmployeeIn(
        user_id=doctor_user.id, dob="1980-04-02", hire_date="2015-06-01", salary=90000,
    ))
    doctor = admin.create_doctor(DoctorIn(emp_id=employee.id, charges=150))
    ward = admin.create_ward(WardIn(type="general", charges=100, maxCap=2))
    patient = admin.create_patient(PatientIn(
        user_id=patient_user.id,
        doctor_id=doctor.id,
        dateOfAdm="2024-03-01",
        blood_group="O+",
        dob="1992-09-15",
        patient_problem="Fractured wrist",
    ))
    medicine = admin.create_medicine(MedicineIn(name="Ibuprofen", price=4.5))
    return {
        "doctor_user": doctor_user,
        "patient_user": patient_user,
        "employee": employee,
        "doctor": doctor,
        "ward": ward,
        "patient": patient,
        "medicine": medicine,
    }
