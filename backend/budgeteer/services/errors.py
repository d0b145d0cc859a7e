"""
Typed exceptions for the budgeting core.

Every error carries a machine-readable ``code`` and is raised synchronously
by the services. The API layer translates them once, in main.py, into
``{"detail", "code", "field"}`` responses; nothing is retried.

    BudgetError
    +-- ValidationError   (422) missing/invalid field, unresolved reference
    +-- NotFoundError     (404) entity absent or owned by another account
    +-- ConflictError     (409) duplicate offer outside the upsert path
    +-- Unauthenticated   (401) no resolvable account for the caller
"""
from typing import Optional


class BudgetError(Exception):
    code: str = "BUDGET_ERROR"
    status_code: int = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "field": self.field}


class ValidationError(BudgetError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(BudgetError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        label = f"{entity} {entity_id}" if entity_id is not None else entity
        super().__init__(f"{label} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(BudgetError):
    code = "CONFLICT"
    status_code = 409


class Unauthenticated(BudgetError):
    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)
