"""
Engine Errors - typed failures raised by the services.

Every service validates before it writes, so any of these leaves
persisted state untouched. The HTTP layer maps them to status codes:

- NotFound       -> 404
- Forbidden      -> 403
- InvalidState   -> 409
- ValidationError -> 422 (with the offending field)
"""

from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class EngineError(Exception):
    """Base class for all engine failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ============================================================
# NOT FOUND
# ============================================================

class NotFound(EngineError):
    pass


class AssessmentNotFound(NotFound):
    def __init__(self, message: str = "Assessment not found"):
        super().__init__(message)


class AttemptNotFound(NotFound):
    def __init__(self, message: str = "Attempt not found"):
        super().__init__(message)


class EventNotFound(NotFound):
    def __init__(self, message: str = "Event not found"):
        super().__init__(message)


class ParticipantNotFound(NotFound):
    def __init__(self, message: str = "Participant not found for this event"):
        super().__init__(message)


# ============================================================
# FORBIDDEN
# ============================================================

class Forbidden(EngineError):
    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


# ============================================================
# INVALID STATE
# ============================================================

class InvalidState(EngineError):
    pass


class AlreadySubmitted(InvalidState):
    def __init__(self, message: str = "Already submitted"):
        super().__init__(message)


class AlreadyRegistered(InvalidState):
    def __init__(self, message: str = "You are already registered for this event"):
        super().__init__(message)


class RegistrationClosed(InvalidState):
    def __init__(self, message: str = "Registration deadline has passed"):
        super().__init__(message)


class ParticipantDisqualified(InvalidState):
    def __init__(self, message: str = "Participant has been disqualified"):
        super().__init__(message)


class AttemptClosed(AttemptNotFound, InvalidState):
    """Saving into an attempt that is no longer in progress."""

    def __init__(self, message: str = "Attempt not found or already submitted"):
        super().__init__(message)


# ============================================================
# VALIDATION
# ============================================================

class ValidationError(EngineError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


# ============================================================
# CONCURRENCY
# ============================================================

class ConcurrentUpdateError(EngineError):
    """A compare-and-swap write lost against another writer."""

    def __init__(self, message: str = "Record was modified concurrently, please retry"):
        super().__init__(message)


def parse_payload(model_cls: Type[ModelT], payload: Union[ModelT, dict]) -> ModelT:
    """Validate a plain payload into a schema, reporting the first offending field."""
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(first.get("msg", "Invalid input"), field=field) from e
