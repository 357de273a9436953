"""
main.py
========
This is the FastAPI entry point for the Hospital Records API.
It:
 - Builds settings and the database once at startup.
 - Seeds an admin account when ADMIN_EMAIL / ADMIN_PASSWORD are set.
 - Exposes REST endpoints for users, employees, doctors, patients,
   wards, medicines, doctor visits and medicine assignments.
 - Translates coordinator errors into `{success, message}` responses.
"""

import traceback
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import Settings
from .coordinator import HospitalRecordCoordinator
from .db import Database, get_db
from .errors import HospitalError
from .models import Base
from .schemas import (
    AssignmentIn, AssignmentPatch, DoctorIn, DoctorPatch, EmployeeIn,
    EmployeePatch, ForgotPasswordRequest, LoginRequest, MedicineIn,
    MedicinePatch, PatientIn, PatientPatch, RegisterRequest,
    ResetPasswordRequest, TokenResponse, UserOut, UserPatch, VisitIn,
    VisitPatch, WardIn, WardPatch,
)
from .security import (
    RESET, CurrentUser, create_access_token, create_token, decode_token,
    get_current_user, get_optional_user, get_settings, password_fingerprint,
)

# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------

settings = Settings.from_env()

app = FastAPI(title="Hospital Records API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def configure(app: FastAPI, settings: Settings):
    """Attach settings and a Database to the app (startup, or tests beforehand)."""
    app.state.settings = settings
    app.state.db = Database(settings)


# ---------------------------------------------------------------------------
# APP STARTUP EVENT
# ---------------------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    """
    Called when FastAPI starts.
    Initializes the database and seeds the admin account.
    """
    print("🚀 Starting Hospital Records API...")
    if getattr(app.state, "db", None) is None:
        configure(app, settings)
    current = app.state.settings
    app.state.db.init_db(Base)  # Create tables if missing

    if current.admin_email and current.admin_password:
        db = app.state.db.SessionLocal()
        try:
            seeded = HospitalRecordCoordinator(db, current).ensure_admin(
                current.admin_email, current.admin_password
            )
            if seeded:
                print(f"🛡️ Seeded admin account {seeded.email} (ID: {seeded.id}).")
            else:
                print("🛡️ Admin account already exists.")
        finally:
            db.close()

    if current.track_ward_occupancy:
        print("🛏️ Ward occupancy tracking is enabled.")


@app.on_event("shutdown")
async def shutdown_event():
    db = getattr(app.state, "db", None)
    if db is not None:
        db.dispose()


# ---------------------------------------------------------------------------
# ERROR HANDLERS
# ---------------------------------------------------------------------------

@app.exception_handler(HospitalError)
async def hospital_error_handler(request: Request, exc: HospitalError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "message": "Invalid request data", "errors": errors})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    print(f"❌ Unhandled error on {request.method} {request.url.path}: {exc!r}")
    traceback.print_exc()
    content = {"success": False, "message": "Server error"}
    if getattr(app.state, "settings", settings).debug:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# ---------------------------------------------------------------------------
# DEPENDENCIES / RESPONSE HELPERS
# ---------------------------------------------------------------------------

def get_coordinator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    current: CurrentUser = Depends(get_current_user),
) -> HospitalRecordCoordinator:
    return HospitalRecordCoordinator(db, settings, current)


def get_public_coordinator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> HospitalRecordCoordinator:
    return HospitalRecordCoordinator(db, settings)


def get_registering_coordinator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    current: Optional[CurrentUser] = Depends(get_optional_user),
) -> HospitalRecordCoordinator:
    return HospitalRecordCoordinator(db, settings, current)


def _dump(item):
    return item.model_dump(by_alias=True, mode="json")


def one(item) -> dict:
    return {"success": True, "data": _dump(item)}


def many(items: List) -> dict:
    return {"success": True, "count": len(items), "data": [_dump(i) for i in items]}


def done(message: str) -> dict:
    return {"success": True, "message": message}


# ---------------------------------------------------------------------------
# AUTH ENDPOINTS
# ---------------------------------------------------------------------------

@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, hc: HospitalRecordCoordinator = Depends(get_registering_coordinator)):
    """Patients may sign up anonymously; staff and admin accounts need an admin token."""
    return one(hc.register_user(req))


@app.post("/api/auth/login")
def login(req: LoginRequest, hc: HospitalRecordCoordinator = Depends(get_public_coordinator)):
    user = hc.authenticate(req.email, req.password)
    token = create_access_token(user, hc.settings)
    return one(TokenResponse(access_token=token, user=UserOut.model_validate(user)))


@app.post("/api/auth/forgot-password")
def forgot_password(req: ForgotPasswordRequest, hc: HospitalRecordCoordinator = Depends(get_public_coordinator)):
    """
    Verify the security question/answer and hand back a short-lived
    reset token for /api/auth/reset-password.
    """
    user = hc.verify_security_answer(req.email, req.security_question, req.security_answer)
    reset_token = create_token(
        {"sub": str(user.id), "pwd": password_fingerprint(user.password_hash)},
        hc.settings, purpose=RESET,
    )
    return {
        "success": True,
        "message": "Security answer verified",
        "data": {"userId": user.id, "resetToken": reset_token},
    }


@app.post("/api/auth/reset-password")
def reset_password(req: ResetPasswordRequest, hc: HospitalRecordCoordinator = Depends(get_public_coordinator)):
    payload = decode_token(req.reset_token, hc.settings, purpose=RESET)
    hc.reset_password(int(payload["sub"]), req.new_password, payload.get("pwd", ""))
    return done("Password reset successful")


@app.get("/api/auth/me")
def me(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.me())


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------

@app.get("/api/users")
def list_users(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_users())


@app.get("/api/users/{user_id}")
def get_user(user_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_user(user_id))


@app.put("/api/users/{user_id}")
def update_user(user_id: int, patch: UserPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_user(user_id, patch))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_user(user_id)
    return done("User deleted successfully")


# ---------------------------------------------------------------------------
# EMPLOYEES
# ---------------------------------------------------------------------------

@app.get("/api/employees")
def list_employees(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_employees())


@app.get("/api/employees/{employee_id}")
def get_employee(employee_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_employee(employee_id))


@app.post("/api/employees", status_code=201)
def create_employee(req: EmployeeIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.create_employee(req))


@app.put("/api/employees/{employee_id}")
def update_employee(employee_id: int, patch: EmployeePatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_employee(employee_id, patch))


@app.delete("/api/employees/{employee_id}")
def delete_employee(employee_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_employee(employee_id)
    return done("Employee deleted successfully")


# ---------------------------------------------------------------------------
# DOCTORS
# ---------------------------------------------------------------------------

@app.get("/api/doctors")
def list_doctors(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_doctors())


@app.get("/api/doctors/{doctor_id}")
def get_doctor(doctor_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_doctor(doctor_id))


@app.post("/api/doctors", status_code=201)
def create_doctor(req: DoctorIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.create_doctor(req))


@app.put("/api/doctors/{doctor_id}")
def update_doctor(doctor_id: int, patch: DoctorPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_doctor(doctor_id, patch))


@app.delete("/api/doctors/{doctor_id}")
def delete_doctor(doctor_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_doctor(doctor_id)
    return done("Doctor deleted successfully")


# ---------------------------------------------------------------------------
# PATIENTS
# ---------------------------------------------------------------------------

@app.get("/api/patients")
def list_patients(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_patients())


@app.get("/api/patients/doctor/{doctor_id}")
def list_doctor_patients(doctor_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    """Patients attended by one doctor (for the doctor dashboard)."""
    return many(hc.list_patients_for_doctor(doctor_id))


@app.get("/api/patients/{patient_id}")
def get_patient(patient_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_patient(patient_id))


@app.post("/api/patients", status_code=201)
def create_patient(req: PatientIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.create_patient(req))


@app.put("/api/patients/{patient_id}")
def update_patient(patient_id: int, patch: PatientPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_patient(patient_id, patch))


@app.delete("/api/patients/{patient_id}")
def delete_patient(patient_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_patient(patient_id)
    return done("Patient deleted successfully")


# ---------------------------------------------------------------------------
# WARDS
# ---------------------------------------------------------------------------

@app.get("/api/wards")
def list_wards(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_wards())


@app.get("/api/wards/status/available")
def list_available_wards(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_available_wards())


@app.get("/api/wards/{ward_id}")
def get_ward(ward_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_ward(ward_id))


@app.post("/api/wards", status_code=201)
def create_ward(req: WardIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.create_ward(req))


@app.put("/api/wards/{ward_id}")
def update_ward(ward_id: int, patch: WardPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_ward(ward_id, patch))


@app.delete("/api/wards/{ward_id}")
def delete_ward(ward_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_ward(ward_id)
    return done("Ward removed")


# ---------------------------------------------------------------------------
# MEDICINES
# ---------------------------------------------------------------------------

@app.get("/api/medicines")
def list_medicines(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_medicines())


@app.get("/api/medicines/{medicine_id}")
def get_medicine(medicine_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_medicine(medicine_id))


@app.post("/api/medicines", status_code=201)
def create_medicine(req: MedicineIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.create_medicine(req))


@app.put("/api/medicines/{medicine_id}")
def update_medicine(medicine_id: int, patch: MedicinePatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_medicine(medicine_id, patch))


@app.delete("/api/medicines/{medicine_id}")
def delete_medicine(medicine_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_medicine(medicine_id)
    return done("Medicine deleted successfully")


# ---------------------------------------------------------------------------
# DOCTOR VISITS
# ---------------------------------------------------------------------------

@app.get("/api/doctor-visits")
def list_visits(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_visits())


@app.get("/api/doctor-visits/doctor/{doctor_id}")
def list_doctor_visits(doctor_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_visits(doctor_id=doctor_id))


@app.get("/api/doctor-visits/patient/{patient_id}")
def list_patient_visits(patient_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_visits(pat_id=patient_id))


@app.get("/api/doctor-visits/{visit_id}")
def get_visit(visit_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_visit(visit_id))


@app.post("/api/doctor-visits", status_code=201)
def record_visit(req: VisitIn, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.record_visit(req))


@app.put("/api/doctor-visits/{visit_id}")
def update_visit(visit_id: int, patch: VisitPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_visit(visit_id, patch))


@app.delete("/api/doctor-visits/{visit_id}")
def delete_visit(visit_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_visit(visit_id)
    return done("Visit record removed")


# ---------------------------------------------------------------------------
# MEDICINE ASSIGNMENTS
# ---------------------------------------------------------------------------

@app.get("/api/medicine-assigned")
def list_assignments(hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_assignments())


@app.get("/api/medicine-assigned/patient/{patient_id}")
def list_patient_assignments(patient_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_assignments(pat_id=patient_id))


@app.get("/api/medicine-assigned/medicine/{medicine_id}")
def list_medicine_assignments(medicine_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return many(hc.list_assignments(medicine_id=medicine_id))


@app.get("/api/medicine-assigned/{assignment_id}")
def get_assignment(assignment_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.get_assignment(assignment_id))


@app.post("/api/medicine-assigned")
def assign_medicine(req: AssignmentIn, response: Response, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    """
    Assign a medicine to a patient.

    - 201 with the new assignment
    - 200 when an existing assignment was topped up
    """
    assignment, created = hc.assign_medicine(req)
    response.status_code = 201 if created else 200
    return one(assignment)


@app.put("/api/medicine-assigned/{assignment_id}")
def update_assignment(assignment_id: int, patch: AssignmentPatch, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    return one(hc.update_assignment(assignment_id, patch))


@app.delete("/api/medicine-assigned/{assignment_id}")
def delete_assignment(assignment_id: int, hc: HospitalRecordCoordinator = Depends(get_coordinator)):
    hc.delete_assignment(assignment_id)
    return done("Medicine assignment removed")


# ---------------------------------------------------------------------------
# ROOT ENDPOINT
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    """Basic health check endpoint."""
    return {"message": "Hospital Records API is running!"}


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
