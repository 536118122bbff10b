"""Domain error taxonomy.

Services raise these; the HTTP layer maps them to status codes in app.main.
"""
from typing import Optional


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """Malformed input. Nothing was written."""
    status_code = 422


class DomainStateError(DomainError):
    """Illegal transition or precondition. Nothing was written."""
    status_code = 409


class ExternalGatewayError(DomainError):
    """Payment gateway unreachable or returned a failure."""
    status_code = 502


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, resource_name: str, resource_id=None):
        if resource_id is not None:
            message = f"{resource_name} with id {resource_id} not found"
        else:
            message = f"{resource_name} not found"
        super().__init__(message, details={"resource": resource_name, "id": resource_id})


class PersistenceError(DomainError):
    """Storage failed during a write; the previous committed state is intact."""
    status_code = 503
