"""
Error taxonomy for the scheduling core.

Conflicts and validation problems are expected, caller-facing outcomes and
carry enough detail to correct course. PersistenceError hides store internals.
"""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    default_message = "Scheduling error"

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {"error": type(self).__name__, "message": self.message, **self.details}


class ValidationError(SchedulingError):
    """Missing or malformed input. ``errors`` maps field -> list of messages."""

    default_message = "Invalid input"

    def __init__(self, message=None, errors=None, **details):
        self.errors = errors or {}
        super().__init__(message, errors=self.errors, **details)

    @classmethod
    def from_form(cls, form):
        errors = {field: [str(e) for e in errs] for field, errs in form.errors.items()}
        return cls("Please correct the errors below.", errors=errors)


class ConflictError(SchedulingError):
    """Slot already taken, or a status change the state machine forbids."""

    default_message = "Conflict"

    @property
    def current_status(self):
        return self.details.get("current_status")

    @property
    def requested_status(self):
        return self.details.get("requested_status")

    @property
    def reason(self):
        return self.details.get("reason")

    @property
    def alternatives(self):
        return self.details.get("alternatives", [])


class NotFoundError(SchedulingError):
    default_message = "Not found"


class AuthorizationError(SchedulingError):
    default_message = "Not allowed to perform this action"


class PersistenceError(SchedulingError):
    default_message = "The appointment store is unavailable. Please try again later."
