"""
test_coordinator.py
===================
Coordinator tests against a real (temporary) SQLite store.
Tests cover:
 - Reference checks on patient / doctor / employee creation
 - Medicine assignment merge policy
 - Duplicate doctor visit rejection
 - Partial updates and null handling
 - Role enforcement
 - Ward occupancy tracking
"""

import datetime

import pytest

from hospital_api.coordinator import HospitalRecordCoordinator
from hospital_api.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from hospital_api.models import Patient, Ward
from hospital_api.schemas import (
    AssignmentIn, AssignmentPatch, DoctorIn, EmployeeIn, PatientIn,
    PatientPatch, UserPatch, VisitIn, VisitPatch, WardIn, WardPatch,
)
from hospital_api.security import password_fingerprint


def patient_in(user_id, doctor_id, **extra):
    data = dict(
        user_id=user_id,
        doctor_id=doctor_id,
        dateOfAdm="2024-05-10",
        blood_group="AB-",
        dob="1970-01-20",
        patient_problem="Pneumonia",
    )
    data.update(extra)
    return PatientIn(**data)


# --------------------------------------------------------------------------
# CREATION & REFERENCES
# --------------------------------------------------------------------------

def test_sequential_ids_per_entity(admin, records, register):
    """✅ Each entity type numbers its own records from 1."""
    assert records["doctor"].id == 1
    assert records["patient"].id == 1
    assert records["medicine"].id == 1
    assert records["patient_user"].id == 2

    third = register(admin, "third@hospital.org")
    assert third.id == 3


def test_patient_with_unknown_doctor_is_not_stored(admin, records, db):
    """✅ Unknown doctorId -> NotFound, nothing persisted."""
    before = db.query(Patient).count()
    with pytest.raises(NotFound) as exc:
        admin.create_patient(patient_in(records["patient_user"].id, doctor_id=999))
    assert exc.value.message == "Doctor not found"
    assert db.query(Patient).count() == before


def test_patient_with_unknown_user(admin, records):
    with pytest.raises(NotFound) as exc:
        admin.create_patient(patient_in(999, records["doctor"].id))
    assert exc.value.message == "User not found"


def test_patient_defaults(admin, records):
    patient = records["patient"]
    assert patient.payment_status.value == "pending"
    assert patient.ward_id is None
    assert patient.date_of_admission == datetime.date(2024, 3, 1)


def test_doctor_requires_employee(admin):
    with pytest.raises(NotFound) as exc:
        admin.create_doctor(DoctorIn(emp_id=42, charges=10))
    assert exc.value.message == "Employee not found"


def test_one_doctor_per_employee(admin, records):
    """✅ Second doctor for the same employee -> Conflict."""
    with pytest.raises(Conflict):
        admin.create_doctor(DoctorIn(emp_id=records["employee"].id, charges=99))
    assert len(admin.list_doctors()) == 1


def test_one_employee_per_user(admin, records):
    with pytest.raises(Conflict):
        admin.create_employee(EmployeeIn(
            user_id=records["doctor_user"].id, dob="1980-04-02", hire_date="2020-01-01", salary=1,
        ))


def test_duplicate_email_conflicts(admin, register):
    """✅ Unique email: one success, one Conflict (case-insensitive)."""
    register(admin, "nurse@hospital.org")
    with pytest.raises(Conflict):
        register(admin, "NURSE@hospital.org")
    assert len(admin.list_users()) == 1


# --------------------------------------------------------------------------
# MEDICINE ASSIGNMENT
# --------------------------------------------------------------------------

def test_repeat_assignment_accumulates(as_role, records, db):
    """
    ✅ Assigning the same medicine twice (3 then 4) leaves one record
    with quantity 7 and the second prescription.
    """
    doctor = as_role("doctor", user_id=records["doctor_user"].id)
    pat, med = records["patient"].id, records["medicine"].id

    first, created = doctor.assign_medicine(AssignmentIn(
        pat_id=pat, medicine_id=med, prescription="200mg twice daily", medicine_qty=3,
    ))
    assert created is True
    second, created = doctor.assign_medicine(AssignmentIn(
        pat_id=pat, medicine_id=med, prescription="400mg after meals", medicine_qty=4,
    ))
    assert created is False
    assert second.id == first.id

    stored = doctor.list_assignments(pat_id=pat)
    assert len(stored) == 1
    assert stored[0].medicine_qty == 7
    assert stored[0].prescription == "400mg after meals"


def test_assignment_requires_patient_and_medicine(admin, records):
    with pytest.raises(NotFound) as exc:
        admin.assign_medicine(AssignmentIn(pat_id=50, medicine_id=records["medicine"].id,
                                           prescription="x", medicine_qty=1))
    assert exc.value.message == "Patient not found"
    with pytest.raises(NotFound) as exc:
        admin.assign_medicine(AssignmentIn(pat_id=records["patient"].id, medicine_id=50,
                                           prescription="x", medicine_qty=1))
    assert exc.value.message == "Medicine not found"


def test_assignment_embeds_references(admin, records):
    assignment, _ = admin.assign_medicine(AssignmentIn(
        pat_id=records["patient"].id, medicine_id=records["medicine"].id,
        prescription="as needed", medicine_qty=2,
    ))
    assert assignment.patient.patient_problem == "Fractured wrist"
    assert assignment.medicine.name == "Ibuprofen"
    assert assignment.medicine.price == 4.5


def test_patient_role_cannot_assign(as_role, records):
    patient = as_role("patient", user_id=records["patient_user"].id)
    with pytest.raises(Forbidden):
        patient.assign_medicine(AssignmentIn(
            pat_id=records["patient"].id, medicine_id=records["medicine"].id,
            prescription="x", medicine_qty=1,
        ))


def test_update_assignment_is_partial(admin, records):
    assignment, _ = admin.assign_medicine(AssignmentIn(
        pat_id=records["patient"].id, medicine_id=records["medicine"].id,
        prescription="morning", medicine_qty=5,
    ))
    updated = admin.update_assignment(assignment.id, AssignmentPatch(medicine_qty=1))
    assert updated.medicine_qty == 1
    assert updated.prescription == "morning"


# --------------------------------------------------------------------------
# DOCTOR VISITS
# --------------------------------------------------------------------------

def test_duplicate_visit_rejected(as_role, records):
    """✅ Same (patient, doctor, date) twice -> one visit, one Conflict."""
    staff = as_role("employee")
    visit = VisitIn(pat_id=records["patient"].id, doctor_id=records["doctor"].id,
                    visit_date="2024-05-11", remarks="Rounds")
    staff.record_visit(visit)
    with pytest.raises(Conflict) as exc:
        staff.record_visit(visit)
    assert exc.value.message == "This visit record already exists"
    assert len(staff.list_visits(pat_id=records["patient"].id)) == 1


def test_visit_defaults_to_today(admin, records):
    visit = admin.record_visit(VisitIn(pat_id=records["patient"].id, doctor_id=records["doctor"].id))
    assert visit.visit_date == datetime.date.today()
    assert visit.visits == 1
    assert visit.doctor.charges == 150
    assert visit.patient.id == records["patient"].id


def test_visit_requires_doctor(admin, records):
    with pytest.raises(NotFound) as exc:
        admin.record_visit(VisitIn(pat_id=records["patient"].id, doctor_id=77))
    assert exc.value.message == "Doctor not found"


def test_visit_update_into_existing_date_conflicts(admin, records):
    pat, doc = records["patient"].id, records["doctor"].id
    admin.record_visit(VisitIn(pat_id=pat, doctor_id=doc, visit_date="2024-05-11"))
    second = admin.record_visit(VisitIn(pat_id=pat, doctor_id=doc, visit_date="2024-05-12"))
    with pytest.raises(Conflict):
        admin.update_visit(second.id, VisitPatch(visit_date="2024-05-11"))


def test_only_admin_deletes_visits(as_role, records):
    doctor = as_role("doctor")
    visit = doctor.record_visit(VisitIn(pat_id=records["patient"].id, doctor_id=records["doctor"].id))
    with pytest.raises(Forbidden):
        doctor.delete_visit(visit.id)
    as_role("admin").delete_visit(visit.id)
    assert doctor.list_visits() == []


# --------------------------------------------------------------------------
# UPDATE / DELETE
# --------------------------------------------------------------------------

def test_partial_patient_update(admin, records):
    patient = admin.update_patient(records["patient"].id, PatientPatch(payment_status="paid"))
    assert patient.payment_status.value == "paid"
    assert patient.patient_problem == "Fractured wrist"
    assert patient.blood_group.value == "O+"


def test_patient_update_checks_doctor(admin, records):
    with pytest.raises(NotFound):
        admin.update_patient(records["patient"].id, PatientPatch(doctor_id=31))


def test_null_for_required_field_rejected(admin, records):
    with pytest.raises(ValidationError):
        admin.update_patient(records["patient"].id, PatientPatch(patient_problem=None))


def test_update_missing_target(admin):
    with pytest.raises(NotFound) as exc:
        admin.update_user(404, UserPatch(first_name="Nobody"))
    assert exc.value.message == "User not found"


def test_delete_missing_target(admin):
    with pytest.raises(NotFound):
        admin.delete_medicine(12)


def test_update_user_email_conflict(admin, records):
    with pytest.raises(Conflict):
        admin.update_user(records["patient_user"].id, UserPatch(email="doc@hospital.org"))


def test_ward_capacity_validated_on_update(admin, records):
    with pytest.raises(ValidationError):
        admin.update_ward(records["ward"].id, WardPatch(current_occupancy=3))


def test_non_admin_cannot_delete_ward(as_role, records, db):
    """✅ Forbidden for a doctor; the ward stays in the store."""
    with pytest.raises(Forbidden):
        as_role("doctor").delete_ward(records["ward"].id)
    assert db.query(Ward).filter_by(id=records["ward"].id).count() == 1


def test_ids_not_reused_while_higher_ids_exist(admin, records, register):
    register(admin, "a@hospital.org")
    register(admin, "b@hospital.org")
    admin.delete_user(3)
    assert register(admin, "c@hospital.org").id == 5


# --------------------------------------------------------------------------
# ACCOUNTS
# --------------------------------------------------------------------------

def test_authenticate(admin, records):
    user = admin.authenticate("DOC@hospital.org", "secret123")
    assert user.id == records["doctor_user"].id
    with pytest.raises(Unauthorized):
        admin.authenticate("doc@hospital.org", "wrong-password")


def test_security_answer_check(admin, records):
    user = admin.verify_security_answer("pat@hospital.org", "First pet?", "  rex ")
    assert user.id == records["patient_user"].id
    with pytest.raises(ValidationError):
        admin.verify_security_answer("pat@hospital.org", "First pet?", "Fido")
    with pytest.raises(NotFound):
        admin.verify_security_answer("ghost@hospital.org", "First pet?", "Rex")


def test_reset_password(admin, records):
    admin.reset_password(records["patient_user"].id, "new-secret")
    assert admin.authenticate("pat@hospital.org", "new-secret").id == records["patient_user"].id


def test_reset_fingerprint_is_single_use(admin, records):
    """✅ A reset issued against the old password stops working once it has been used."""
    user = admin.authenticate("pat@hospital.org", "secret123")
    fingerprint = password_fingerprint(user.password_hash)
    admin.reset_password(user.id, "first-reset", fingerprint)
    with pytest.raises(Unauthorized) as exc:
        admin.reset_password(user.id, "second-reset", fingerprint)
    assert exc.value.message == "Reset token has already been used"
    assert admin.authenticate("pat@hospital.org", "first-reset").id == user.id


def test_anonymous_signup_is_patient_only(db, settings, register):
    public = HospitalRecordCoordinator(db, settings)
    assert register(public, "walkin@hospital.org").role.value == "patient"
    for role in ("admin", "doctor", "employee"):
        with pytest.raises(Forbidden) as exc:
            register(public, f"{role}@hospital.org", role=role)
        assert exc.value.message == "Not authorized to add staff accounts"
    assert public.users.count() == 1


def test_only_admin_creates_staff_accounts(as_role, register):
    with pytest.raises(Forbidden):
        register(as_role("doctor"), "intern@hospital.org", role="doctor")
    assert register(as_role("admin"), "intern@hospital.org", role="doctor").role.value == "doctor"


def test_ensure_admin_only_once(admin):
    first = admin.ensure_admin("root@hospital.org", "rootpass")
    assert first.role.value == "admin"
    assert admin.ensure_admin("other@hospital.org", "rootpass") is None


# --------------------------------------------------------------------------
# WARD OCCUPANCY
# --------------------------------------------------------------------------

def test_ward_link_is_informational_by_default(admin, records):
    ward = records["ward"]
    admin.create_patient(patient_in(records["patient_user"].id, records["doctor"].id, ward_id=ward.id))
    assert admin.get_ward(ward.id).current_occupancy == 0
    # unknown ward ids are accepted when tracking is off
    admin.create_patient(patient_in(records["patient_user"].id, records["doctor"].id, ward_id=999))


def test_ward_occupancy_tracking(as_role, records):
    """✅ Admissions fill the ward, a full ward refuses, discharge frees a bed."""
    hc = as_role("admin", track_ward_occupancy=True)
    ward_id = records["ward"].id
    user_id, doctor_id = records["patient_user"].id, records["doctor"].id

    first = hc.create_patient(patient_in(user_id, doctor_id, ward_id=ward_id))
    hc.create_patient(patient_in(user_id, doctor_id, ward_id=ward_id))
    ward = hc.get_ward(ward_id)
    assert ward.current_occupancy == 2
    assert ward.availability is False
    assert hc.list_available_wards() == []

    with pytest.raises(Conflict) as exc:
        hc.create_patient(patient_in(user_id, doctor_id, ward_id=ward_id))
    assert exc.value.message == "Ward is at full capacity"

    hc.delete_patient(first.id)
    ward = hc.get_ward(ward_id)
    assert ward.current_occupancy == 1
    assert ward.availability is True


def test_ward_transfer_moves_occupancy(as_role, records):
    hc = as_role("admin", track_ward_occupancy=True)
    icu = hc.create_ward(WardIn(type="icu", charges=900, maxCap=1))
    patient = hc.create_patient(patient_in(records["patient_user"].id, records["doctor"].id,
                                           ward_id=records["ward"].id))
    hc.update_patient(patient.id, PatientPatch(ward_id=icu.id))
    assert hc.get_ward(records["ward"].id).current_occupancy == 0
    assert hc.get_ward(icu.id).current_occupancy == 1

    with pytest.raises(NotFound):
        hc.create_patient(patient_in(records["patient_user"].id, records["doctor"].id, ward_id=404))


def test_shrinking_ward_recomputes_availability(as_role, records):
    hc = as_role("admin", track_ward_occupancy=True)
    ward_id = records["ward"].id
    hc.create_patient(patient_in(records["patient_user"].id, records["doctor"].id, ward_id=ward_id))
    assert hc.get_ward(ward_id).availability is True

    ward = hc.update_ward(ward_id, WardPatch(maxCap=1))
    assert ward.availability is False
    assert hc.list_available_wards() == []

    ward = hc.update_ward(ward_id, WardPatch(maxCap=3))
    assert ward.availability is True


def test_failed_admission_gives_bed_back(as_role, records, monkeypatch):
    hc = as_role("admin", track_ward_occupancy=True)
    ward_id = records["ward"].id

    def refuse(values):
        raise Conflict("Patient already exists or violates a constraint")

    monkeypatch.setattr(hc.patients, "insert", refuse)
    with pytest.raises(Conflict):
        hc.create_patient(patient_in(records["patient_user"].id, records["doctor"].id, ward_id=ward_id))
    ward = hc.get_ward(ward_id)
    assert ward.current_occupancy == 0
    assert ward.availability is True


def test_failed_transfer_gives_bed_back(as_role, records, monkeypatch):
    hc = as_role("admin", track_ward_occupancy=True)
    icu = hc.create_ward(WardIn(type="icu", charges=900, maxCap=1))
    patient = hc.create_patient(patient_in(records["patient_user"].id, records["doctor"].id,
                                           ward_id=records["ward"].id))

    def refuse(filter, patch):
        raise Conflict("Patient already exists or violates a constraint")

    monkeypatch.setattr(hc.patients, "update_one", refuse)
    with pytest.raises(Conflict):
        hc.update_patient(patient.id, PatientPatch(ward_id=icu.id))
    assert hc.get_ward(icu.id).current_occupancy == 0
    assert hc.get_ward(records["ward"].id).current_occupancy == 1
