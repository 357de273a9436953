"""
policy.py
=========
Table-driven access policy: which roles may perform which operation on
which entity type. All role checks go through here.
"""

import enum
from typing import Dict, FrozenSet, Optional

from .errors import Forbidden
from .models import Role


class Operation(str, enum.Enum):
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"


# Sentinels for rows that don't list explicit roles
ANY = "any"          # any authenticated caller
PUBLIC = "public"    # no authentication needed

ADMIN = frozenset({Role.admin})
# "staff" is the employee account role
CLINICAL = frozenset({Role.admin, Role.doctor, Role.employee})

ACCESS_TABLE: Dict[str, Dict[Operation, object]] = {
    "user": {
        Operation.read: ANY,
        Operation.create: PUBLIC,
        Operation.update: ADMIN,
        Operation.delete: ADMIN,
    },
    # admin, doctor and employee sign-ups
    "staff_account": {
        Operation.create: ADMIN,
    },
    "employee": {
        Operation.read: ANY,
        Operation.create: ADMIN,
        Operation.update: ADMIN,
        Operation.delete: ADMIN,
    },
    "doctor": {
        Operation.read: ANY,
        Operation.create: ADMIN,
        Operation.update: ADMIN,
        Operation.delete: ADMIN,
    },
    "patient": {
        Operation.read: ANY,
        Operation.create: ANY,
        Operation.update: ANY,
        Operation.delete: ADMIN,
    },
    "ward": {
        Operation.read: ANY,
        Operation.create: ADMIN,
        Operation.update: ADMIN,
        Operation.delete: ADMIN,
    },
    "medicine": {
        Operation.read: ANY,
        Operation.create: ADMIN,
        Operation.update: ADMIN,
        Operation.delete: ADMIN,
    },
    "doctor_visit": {
        Operation.read: ANY,
        Operation.create: CLINICAL,
        Operation.update: CLINICAL,
        Operation.delete: ADMIN,
    },
    "medicine_assignment": {
        Operation.read: ANY,
        Operation.create: CLINICAL,
        Operation.update: CLINICAL,
        Operation.delete: CLINICAL,
    },
}

ENTITY_LABELS = {
    "user": "users",
    "staff_account": "staff accounts",
    "employee": "employees",
    "doctor": "doctors",
    "patient": "patients",
    "ward": "wards",
    "medicine": "medicines",
    "doctor_visit": "visit records",
    "medicine_assignment": "medicine assignments",
}

VERBS = {
    Operation.read: "view",
    Operation.create: "add",
    Operation.update: "update",
    Operation.delete: "delete",
}


class AccessPolicy:

    def __init__(self, table: Optional[Dict[str, Dict[Operation, object]]] = None):
        self.table = table if table is not None else ACCESS_TABLE

    def can_perform(self, role: Optional[str], operation: Operation, entity: str) -> bool:
        """
        True when `role` may perform `operation` on `entity`.
        `role` is None for unauthenticated callers. Unknown entities or
        operations are denied.
        """
        try:
            operation = Operation(operation)
        except ValueError:
            return False
        allowed = self.table.get(entity, {}).get(operation)
        if allowed is None:
            return False
        if allowed == PUBLIC:
            return True
        if role is None:
            return False
        if allowed == ANY:
            return True
        try:
            return Role(role) in allowed
        except ValueError:
            return False

    def require(self, role: Optional[str], operation: Operation, entity: str):
        if not self.can_perform(role, operation, entity):
            verb = VERBS.get(operation, operation)
            raise Forbidden(
                f"Not authorized to {verb} {ENTITY_LABELS.get(entity, entity)}"
            )


default_policy = AccessPolicy()
