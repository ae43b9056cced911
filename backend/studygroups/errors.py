"""Domain error taxonomy.

Services raise these; `main.py` renders them as structured JSON bodies
`{"status", "error", "message", ...}` using `status_code` and `extra()`.
"""

from typing import Iterable, List


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra(self) -> dict:
        return {}


class NotFoundError(ServiceError):
    status_code = 404


class ValidationError(ServiceError):
    status_code = 400


class InvalidSortFieldError(ValidationError):
    pass


class InvalidReplacementError(ValidationError):
    pass


class ConflictError(ServiceError):
    status_code = 409


class ReferencedEntityError(ConflictError):
    """Delete refused because other rows still point at the target."""

    def __init__(self, entity: str, entity_id: int, referenced_by: Iterable[int]):
        self.entity = entity
        self.entity_id = entity_id
        self.referenced_by: List[int] = sorted(referenced_by)
        super().__init__(
            f"{entity} {entity_id} is referenced by {len(self.referenced_by)} row(s); "
            f"supply replacementId to reassign them"
        )

    def extra(self) -> dict:
        return {"referencedBy": self.referenced_by}


class StorageUnavailableError(ServiceError):
    status_code = 503


class ImportParseError(ValidationError):
    pass


class ImportValidationError(ValidationError):
    pass
