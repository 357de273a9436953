"""
coordinator.py
==============
This module holds the hospital record orchestration logic:
 - Checks every call against the access policy
 - Validates cross-entity references before writing
 - Allocates sequential IDs for new records
 - Merges repeat medicine assignments, rejects duplicate visits
 - Keeps ward occupancy in step with patient admissions (opt-in)

Store calls commit one at a time; nothing here is transactional across
steps. The store's unique indexes turn races into `Conflict`.
"""

import datetime
import secrets
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from .allocator import IdAllocator
from .config import Settings
from .errors import Conflict, NotFound, Unauthorized, ValidationError
from .models import (
    Doctor, DoctorVisit, Employee, Medicine, MedicineAssignment, Patient,
    Role, User, Ward,
)
from .policy import AccessPolicy, Operation, default_policy
from .schemas import (
    AssignmentIn, AssignmentOut, AssignmentPatch, DoctorIn, DoctorOut,
    DoctorPatch, DoctorSummary, EmployeeIn, EmployeeOut, EmployeePatch,
    MedicineIn, MedicineOut, MedicinePatch, MedicineSummary, PatientIn,
    PatientOut, PatientPatch, PatientSummary, RegisterRequest, UserOut,
    UserPatch, VisitIn, VisitOut, VisitPatch, WardIn, WardOut, WardPatch,
)
from .security import (
    CurrentUser, get_password_hash, normalize_answer, password_fingerprint,
    verify_password,
)
from .store import EntityStore


class HospitalRecordCoordinator:
    """
    One operation per entity per CRUD verb, plus the cross-entity writes.
    Built per request with the caller's identity (None for public calls).
    """

    def __init__(self, db: Session, settings: Settings,
                 current_user: Optional[CurrentUser] = None,
                 policy: AccessPolicy = default_policy):
        self.db = db
        self.settings = settings
        self.current_user = current_user
        self.policy = policy
        self.ids = IdAllocator(db)

        self.users = EntityStore(db, User, "User")
        self.employees = EntityStore(db, Employee, "Employee")
        self.doctors = EntityStore(db, Doctor, "Doctor")
        self.patients = EntityStore(db, Patient, "Patient")
        self.wards = EntityStore(db, Ward, "Ward")
        self.medicines = EntityStore(db, Medicine, "Medicine")
        self.visits = EntityStore(db, DoctorVisit, "Visit record")
        self.assignments = EntityStore(db, MedicineAssignment, "Medicine assignment")

    # -----------------------------------------------------------------------
    # HELPERS
    # -----------------------------------------------------------------------

    @property
    def role(self) -> Optional[str]:
        return self.current_user.role if self.current_user else None

    def _allow(self, operation: Operation, entity: str):
        self.policy.require(self.role, operation, entity)

    def _require(self, store: EntityStore, record_id: int, message: str = None):
        obj = store.find_one({"id": record_id})
        if obj is None:
            raise NotFound(message or f"{store.label} not found")
        return obj

    def _insert(self, store: EntityStore, values: dict):
        values["id"] = self.ids.next_id(store.model)
        return store.insert(values)

    @staticmethod
    def _patch_values(model, patch: BaseModel) -> dict:
        """Fields present in the request; explicit nulls only where the column allows them."""
        values = patch.model_dump(exclude_unset=True)
        columns = model.__table__.c
        for key, value in values.items():
            if value is None and not columns[key].nullable:
                raise ValidationError(f"{to_camel(key)} cannot be null")
        return values

    def _update(self, store: EntityStore, record_id: int, values: dict):
        obj = store.update_one({"id": record_id}, values)
        if obj is None:
            raise NotFound(f"{store.label} not found")
        return obj

    def _delete(self, store: EntityStore, record_id: int):
        if not store.delete_one({"id": record_id}):
            raise NotFound(f"{store.label} not found")

    # -----------------------------------------------------------------------
    # USERS / ACCOUNTS
    # -----------------------------------------------------------------------

    def register_user(self, req: RegisterRequest) -> UserOut:
        """
        Create an account. Anyone may sign up as a patient; admin, doctor
        and employee accounts need an authenticated admin caller.
        """
        entity = "user" if req.role == Role.patient else "staff_account"
        self._allow(Operation.create, entity)
        return self._create_user(req)

    def _create_user(self, req: RegisterRequest) -> UserOut:
        email = req.email.lower()
        if self.users.find_one({"email": email}):
            raise Conflict("User already exists")
        user = self._insert(self.users, {
            "first_name": req.first_name,
            "last_name": req.last_name,
            "email": email,
            "password_hash": get_password_hash(req.password),
            "cell_no": req.cell_no,
            "role": req.role,
            "security_question": req.security_question,
            "security_answer_hash": get_password_hash(normalize_answer(req.security_answer)),
        })
        return UserOut.model_validate(user)

    def authenticate(self, email: str, password: str) -> User:
        """Check login credentials; the returned user gets a token from the caller."""
        user = self.users.find_one({"email": email.lower()})
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        return user

    def verify_security_answer(self, email: str, question: str, answer: str) -> User:
        user = self.users.find_one({"email": email.lower()})
        if user is None:
            raise NotFound("User not found")
        if (user.security_question.strip() != question.strip()
                or not verify_password(normalize_answer(answer), user.security_answer_hash)):
            raise ValidationError("Invalid security question or answer")
        return user

    def reset_password(self, user_id: int, new_password: str,
                       fingerprint: Optional[str] = None) -> UserOut:
        """
        Set a new password. `fingerprint` is the password fingerprint the reset
        token was issued against; once the password changes it no longer matches.
        """
        user = self._require(self.users, user_id)
        if fingerprint is not None and fingerprint != password_fingerprint(user.password_hash):
            raise Unauthorized("Reset token has already been used")
        user = self._update(self.users, user_id, {"password_hash": get_password_hash(new_password)})
        return UserOut.model_validate(user)

    def me(self) -> UserOut:
        if self.current_user is None:
            raise Unauthorized("Not authorized, no token")
        return UserOut.model_validate(self._require(self.users, self.current_user.user_id))

    def list_users(self) -> List[UserOut]:
        self._allow(Operation.read, "user")
        return [UserOut.model_validate(u) for u in self.users.find()]

    def get_user(self, user_id: int) -> UserOut:
        self._allow(Operation.read, "user")
        return UserOut.model_validate(self._require(self.users, user_id))

    def update_user(self, user_id: int, patch: UserPatch) -> UserOut:
        self._allow(Operation.update, "user")
        user = self._require(self.users, user_id)
        values = self._patch_values(User, patch)
        if values.get("email"):
            values["email"] = values["email"].lower()
            other = self.users.find_one({"email": values["email"]})
            if other is not None and other.id != user.id:
                raise Conflict("User already exists")
        return UserOut.model_validate(self._update(self.users, user_id, values))

    def delete_user(self, user_id: int):
        self._allow(Operation.delete, "user")
        self._delete(self.users, user_id)

    def ensure_admin(self, email: str, password: str) -> Optional[UserOut]:
        """Seed an admin account when none exists. Returns the new account, if any."""
        if self.users.count({"role": Role.admin}):
            return None
        return self._create_user(RegisterRequest(
            first_name="System",
            last_name="Administrator",
            email=email,
            password=password,
            role=Role.admin,
            security_question="Seeded account",
            security_answer=secrets.token_hex(16),
        ))

    # -----------------------------------------------------------------------
    # EMPLOYEES
    # -----------------------------------------------------------------------

    def create_employee(self, req: EmployeeIn) -> EmployeeOut:
        self._allow(Operation.create, "employee")
        self._require(self.users, req.user_id, "User not found")
        if self.employees.find_one({"user_id": req.user_id}):
            raise Conflict("Employee already exists for this user")
        employee = self._insert(self.employees, req.model_dump())
        return EmployeeOut.model_validate(employee)

    def list_employees(self) -> List[EmployeeOut]:
        self._allow(Operation.read, "employee")
        return [EmployeeOut.model_validate(e) for e in self.employees.find()]

    def get_employee(self, employee_id: int) -> EmployeeOut:
        self._allow(Operation.read, "employee")
        return EmployeeOut.model_validate(self._require(self.employees, employee_id))

    def update_employee(self, employee_id: int, patch: EmployeePatch) -> EmployeeOut:
        self._allow(Operation.update, "employee")
        employee = self._require(self.employees, employee_id)
        values = self._patch_values(Employee, patch)
        user_id = values.get("user_id")
        if user_id is not None and user_id != employee.user_id:
            self._require(self.users, user_id, "User not found")
            if self.employees.find_one({"user_id": user_id}):
                raise Conflict("Employee already exists for this user")
        return EmployeeOut.model_validate(self._update(self.employees, employee_id, values))

    def delete_employee(self, employee_id: int):
        self._allow(Operation.delete, "employee")
        self._delete(self.employees, employee_id)

    # -----------------------------------------------------------------------
    # DOCTORS
    # -----------------------------------------------------------------------

    def create_doctor(self, req: DoctorIn) -> DoctorOut:
        self._allow(Operation.create, "doctor")
        self._require(self.employees, req.emp_id, "Employee not found")
        if self.doctors.find_one({"emp_id": req.emp_id}):
            raise Conflict("Doctor already exists with this employee ID")
        doctor = self._insert(self.doctors, req.model_dump())
        return DoctorOut.model_validate(doctor)

    def list_doctors(self) -> List[DoctorOut]:
        self._allow(Operation.read, "doctor")
        return [DoctorOut.model_validate(d) for d in self.doctors.find()]

    def get_doctor(self, doctor_id: int) -> DoctorOut:
        self._allow(Operation.read, "doctor")
        return DoctorOut.model_validate(self._require(self.doctors, doctor_id))

    def update_doctor(self, doctor_id: int, patch: DoctorPatch) -> DoctorOut:
        self._allow(Operation.update, "doctor")
        doctor = self._require(self.doctors, doctor_id)
        values = self._patch_values(Doctor, patch)
        emp_id = values.get("emp_id")
        if emp_id is not None and emp_id != doctor.emp_id:
            self._require(self.employees, emp_id, "Employee not found")
            if self.doctors.find_one({"emp_id": emp_id}):
                raise Conflict("Doctor already exists with this employee ID")
        return DoctorOut.model_validate(self._update(self.doctors, doctor_id, values))

    def delete_doctor(self, doctor_id: int):
        self._allow(Operation.delete, "doctor")
        self._delete(self.doctors, doctor_id)

    # -----------------------------------------------------------------------
    # WARD OCCUPANCY (only when settings.track_ward_occupancy is on)
    # -----------------------------------------------------------------------

    def _check_ward_room(self, ward_id: int) -> Ward:
        ward = self._require(self.wards, ward_id, "Ward not found")
        if ward.current_occupancy >= ward.max_capacity:
            raise Conflict("Ward is at full capacity")
        return ward

    def _admit_to_ward(self, ward_id: int):
        ward = self._check_ward_room(ward_id)
        occupancy = ward.current_occupancy + 1
        self.wards.update_one({"id": ward_id}, {
            "current_occupancy": occupancy,
            "availability": occupancy < ward.max_capacity,
        })

    def _release_from_ward(self, ward_id: int):
        ward = self.wards.find_one({"id": ward_id})
        if ward is None or ward.current_occupancy <= 0:
            return
        occupancy = ward.current_occupancy - 1
        self.wards.update_one({"id": ward_id}, {
            "current_occupancy": occupancy,
            "availability": occupancy < ward.max_capacity,
        })

    # -----------------------------------------------------------------------
    # PATIENTS
    # -----------------------------------------------------------------------

    def create_patient(self, req: PatientIn) -> PatientOut:
        self._allow(Operation.create, "patient")
        self._require(self.users, req.user_id, "User not found")
        self._require(self.doctors, req.doctor_id, "Doctor not found")
        tracking = self.settings.track_ward_occupancy and req.ward_id is not None
        # bed is claimed before the insert and handed back if the insert fails
        if tracking:
            self._admit_to_ward(req.ward_id)
        try:
            patient = self._insert(self.patients, req.model_dump())
        except Exception:
            if tracking:
                self._release_from_ward(req.ward_id)
            raise
        return PatientOut.model_validate(patient)

    def list_patients(self) -> List[PatientOut]:
        self._allow(Operation.read, "patient")
        return [PatientOut.model_validate(p) for p in self.patients.find()]

    def list_patients_for_doctor(self, doctor_id: int) -> List[PatientOut]:
        self._allow(Operation.read, "patient")
        return [PatientOut.model_validate(p) for p in self.patients.find({"doctor_id": doctor_id})]

    def get_patient(self, patient_id: int) -> PatientOut:
        self._allow(Operation.read, "patient")
        return PatientOut.model_validate(self._require(self.patients, patient_id))

    def update_patient(self, patient_id: int, patch: PatientPatch) -> PatientOut:
        self._allow(Operation.update, "patient")
        patient = self._require(self.patients, patient_id)
        values = self._patch_values(Patient, patch)
        if values.get("doctor_id") is not None:
            self._require(self.doctors, values["doctor_id"], "Doctor not found")
        if values.get("user_id") is not None:
            self._require(self.users, values["user_id"], "User not found")

        old_ward, new_ward = patient.ward_id, values.get("ward_id", patient.ward_id)
        moving = self.settings.track_ward_occupancy and new_ward != old_ward
        if moving and new_ward is not None:
            self._admit_to_ward(new_ward)
        try:
            updated = self._update(self.patients, patient_id, values)
        except Exception:
            if moving and new_ward is not None:
                self._release_from_ward(new_ward)
            raise
        if moving and old_ward is not None:
            self._release_from_ward(old_ward)
        return PatientOut.model_validate(updated)

    def delete_patient(self, patient_id: int):
        self._allow(Operation.delete, "patient")
        patient = self._require(self.patients, patient_id)
        ward_id = patient.ward_id
        self._delete(self.patients, patient_id)
        if self.settings.track_ward_occupancy and ward_id is not None:
            self._release_from_ward(ward_id)

    # -----------------------------------------------------------------------
    # WARDS
    # -----------------------------------------------------------------------

    def create_ward(self, req: WardIn) -> WardOut:
        self._allow(Operation.create, "ward")
        return WardOut.model_validate(self._insert(self.wards, req.model_dump()))

    def list_wards(self) -> List[WardOut]:
        self._allow(Operation.read, "ward")
        return [WardOut.model_validate(w) for w in self.wards.find()]

    def list_available_wards(self) -> List[WardOut]:
        self._allow(Operation.read, "ward")
        return [WardOut.model_validate(w) for w in self.wards.find({"availability": True})]

    def get_ward(self, ward_id: int) -> WardOut:
        self._allow(Operation.read, "ward")
        return WardOut.model_validate(self._require(self.wards, ward_id))

    def update_ward(self, ward_id: int, patch: WardPatch) -> WardOut:
        self._allow(Operation.update, "ward")
        ward = self._require(self.wards, ward_id)
        values = self._patch_values(Ward, patch)
        capacity = values.get("max_capacity", ward.max_capacity)
        occupancy = values.get("current_occupancy", ward.current_occupancy)
        if occupancy > capacity:
            raise ValidationError("currentOccupancy cannot exceed maxCap")
        if self.settings.track_ward_occupancy and (
                "max_capacity" in values or "current_occupancy" in values):
            values["availability"] = occupancy < capacity
        return WardOut.model_validate(self._update(self.wards, ward_id, values))

    def delete_ward(self, ward_id: int):
        self._allow(Operation.delete, "ward")
        self._delete(self.wards, ward_id)

    # -----------------------------------------------------------------------
    # MEDICINES
    # -----------------------------------------------------------------------

    def create_medicine(self, req: MedicineIn) -> MedicineOut:
        self._allow(Operation.create, "medicine")
        return MedicineOut.model_validate(self._insert(self.medicines, req.model_dump()))

    def list_medicines(self) -> List[MedicineOut]:
        self._allow(Operation.read, "medicine")
        return [MedicineOut.model_validate(m) for m in self.medicines.find()]

    def get_medicine(self, medicine_id: int) -> MedicineOut:
        self._allow(Operation.read, "medicine")
        return MedicineOut.model_validate(self._require(self.medicines, medicine_id))

    def update_medicine(self, medicine_id: int, patch: MedicinePatch) -> MedicineOut:
        self._allow(Operation.update, "medicine")
        self._require(self.medicines, medicine_id)
        values = self._patch_values(Medicine, patch)
        return MedicineOut.model_validate(self._update(self.medicines, medicine_id, values))

    def delete_medicine(self, medicine_id: int):
        self._allow(Operation.delete, "medicine")
        self._delete(self.medicines, medicine_id)

    # -----------------------------------------------------------------------
    # READ-SIDE COMPOSITION (referenced record summaries)
    # -----------------------------------------------------------------------

    def _lookup(self, store: EntityStore, ids: Iterable[int]) -> Dict[int, object]:
        return {obj.id: obj for obj in store.find_in("id", set(ids))}

    def _compose_visits(self, visits: List[DoctorVisit]) -> List[VisitOut]:
        patients = self._lookup(self.patients, (v.pat_id for v in visits))
        doctors = self._lookup(self.doctors, (v.doctor_id for v in visits))
        result = []
        for visit in visits:
            out = VisitOut.model_validate(visit)
            if visit.pat_id in patients:
                out.patient = PatientSummary.model_validate(patients[visit.pat_id])
            if visit.doctor_id in doctors:
                out.doctor = DoctorSummary.model_validate(doctors[visit.doctor_id])
            result.append(out)
        return result

    def _compose_assignments(self, assignments: List[MedicineAssignment]) -> List[AssignmentOut]:
        patients = self._lookup(self.patients, (a.pat_id for a in assignments))
        medicines = self._lookup(self.medicines, (a.medicine_id for a in assignments))
        result = []
        for assignment in assignments:
            out = AssignmentOut.model_validate(assignment)
            if assignment.pat_id in patients:
                out.patient = PatientSummary.model_validate(patients[assignment.pat_id])
            if assignment.medicine_id in medicines:
                out.medicine = MedicineSummary.model_validate(medicines[assignment.medicine_id])
            result.append(out)
        return result

    # -----------------------------------------------------------------------
    # DOCTOR VISITS
    # -----------------------------------------------------------------------

    def record_visit(self, req: VisitIn) -> VisitOut:
        """
        Record a doctor's visit to a patient.
        An identical (patient, doctor, visit date) record is rejected,
        never merged.
        """
        self._allow(Operation.create, "doctor_visit")
        self._require(self.patients, req.pat_id, "Patient not found")
        self._require(self.doctors, req.doctor_id, "Doctor not found")
        visit_date = req.visit_date or datetime.date.today()
        key = {"pat_id": req.pat_id, "doctor_id": req.doctor_id, "visit_date": visit_date}
        if self.visits.find_one(key):
            raise Conflict("This visit record already exists")

        visit = self._insert(self.visits, dict(key, visits=req.visits, remarks=req.remarks))
        return self._compose_visits([visit])[0]

    def list_visits(self, pat_id: Optional[int] = None, doctor_id: Optional[int] = None) -> List[VisitOut]:
        self._allow(Operation.read, "doctor_visit")
        filter = {}
        if pat_id is not None:
            filter["pat_id"] = pat_id
        if doctor_id is not None:
            filter["doctor_id"] = doctor_id
        return self._compose_visits(self.visits.find(filter))

    def get_visit(self, visit_id: int) -> VisitOut:
        self._allow(Operation.read, "doctor_visit")
        return self._compose_visits([self._require(self.visits, visit_id)])[0]

    def update_visit(self, visit_id: int, patch: VisitPatch) -> VisitOut:
        self._allow(Operation.update, "doctor_visit")
        visit = self._require(self.visits, visit_id)
        values = self._patch_values(DoctorVisit, patch)
        new_date = values.get("visit_date", visit.visit_date)
        if new_date != visit.visit_date:
            other = self.visits.find_one({
                "pat_id": visit.pat_id, "doctor_id": visit.doctor_id, "visit_date": new_date,
            })
            if other is not None:
                raise Conflict("This visit record already exists")
        return self._compose_visits([self._update(self.visits, visit_id, values)])[0]

    def delete_visit(self, visit_id: int):
        self._allow(Operation.delete, "doctor_visit")
        self._delete(self.visits, visit_id)

    # -----------------------------------------------------------------------
    # MEDICINE ASSIGNMENTS
    # -----------------------------------------------------------------------

    def assign_medicine(self, req: AssignmentIn) -> Tuple[AssignmentOut, bool]:
        """
        Assign a medicine to a patient.
        A repeat assignment of the same pair adds to the quantity and
        replaces the prescription text. Returns (assignment, created).
        """
        self._allow(Operation.create, "medicine_assignment")
        self._require(self.patients, req.pat_id, "Patient not found")
        self._require(self.medicines, req.medicine_id, "Medicine not found")
        key = {"pat_id": req.pat_id, "medicine_id": req.medicine_id}

        existing = self.assignments.find_one(key)
        if existing is not None:
            assignment = self.assignments.update_one({"id": existing.id}, {
                "medicine_qty": existing.medicine_qty + req.medicine_qty,
                "prescription": req.prescription,
            })
            return self._compose_assignments([assignment])[0], False

        assignment = self._insert(self.assignments, dict(
            key, prescription=req.prescription, medicine_qty=req.medicine_qty,
        ))
        return self._compose_assignments([assignment])[0], True

    def list_assignments(self, pat_id: Optional[int] = None,
                         medicine_id: Optional[int] = None) -> List[AssignmentOut]:
        self._allow(Operation.read, "medicine_assignment")
        filter = {}
        if pat_id is not None:
            filter["pat_id"] = pat_id
        if medicine_id is not None:
            filter["medicine_id"] = medicine_id
        return self._compose_assignments(self.assignments.find(filter))

    def get_assignment(self, assignment_id: int) -> AssignmentOut:
        self._allow(Operation.read, "medicine_assignment")
        return self._compose_assignments([self._require(self.assignments, assignment_id)])[0]

    def update_assignment(self, assignment_id: int, patch: AssignmentPatch) -> AssignmentOut:
        self._allow(Operation.update, "medicine_assignment")
        self._require(self.assignments, assignment_id)
        values = self._patch_values(MedicineAssignment, patch)
        return self._compose_assignments([self._update(self.assignments, assignment_id, values)])[0]

    def delete_assignment(self, assignment_id: int):
        self._allow(Operation.delete, "medicine_assignment")
        self._delete(self.assignments, assignment_id)
