from typing import List, Optional


class ServiceError(Exception):
    """Base error raised by the service layer"""
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationError(ServiceError):
    """One or more user input problems; `errors` holds every message"""

    def __init__(self, errors, message: Optional[str] = None):
        if isinstance(errors, str):
            errors = [errors]
        super().__init__(message or ". ".join(errors), list(errors))


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class AuthenticationError(ServiceError):
    status_code = 401
