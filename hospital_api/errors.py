"""
errors.py
=========
Expected failure kinds raised by the coordinator and translated into
`{"success": false, "message": ...}` responses by the transport layer.
"""


class HospitalError(Exception):
    """Base class for every expected, client-facing failure."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(HospitalError):
    """Referenced entity is absent."""
    status_code = 404


class Conflict(HospitalError):
    """Duplicate unique key, duplicate visit, or racing ID allocation."""
    status_code = 400


class Forbidden(HospitalError):
    """Authenticated role lacks permission for the operation."""
    status_code = 401


class Unauthorized(HospitalError):
    """Missing, invalid or expired credentials."""
    status_code = 401


class ValidationError(HospitalError):
    """Malformed or missing field, enum mismatch."""
    status_code = 400
