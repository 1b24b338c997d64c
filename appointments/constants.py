from django.db import models


class AppointmentStatus(models.TextChoices):
    """
    Single status vocabulary for appointments and their history entries.

    pending -> pending_patient_confirmation -> confirmed -> in-progress -> completed,
    with cancelled / rejected / no-show reachable from any non-terminal state.
    """
    PENDING = "pending", "Pending"
    PENDING_PATIENT_CONFIRMATION = "pending_patient_confirmation", "Pending Patient Confirmation"
    CONFIRMED = "confirmed", "Confirmed"
    IN_PROGRESS = "in-progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    REJECTED = "rejected", "Rejected"
    NO_SHOW = "no-show", "No Show"


class AppointmentKind(models.TextChoices):
    REGULAR = "regular", "Regular"
    FOLLOW_UP = "follow-up", "Follow-up"
    EMERGENCY = "emergency", "Emergency"


class ConsultationType(models.TextChoices):
    VIDEO = "video", "Video Consultation"
    IN_PERSON = "in-person", "In-Person Visit"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    REFUNDED = "refunded", "Refunded"


class SlotKind(models.TextChoices):
    REGULAR = "regular", "Regular"
    EMERGENCY = "emergency", "Emergency"


class BreakKind(models.TextChoices):
    LUNCH = "lunch", "Lunch"
    QUICK = "quick", "Quick"
    OTHER = "other", "Other"


class ActorRole(models.TextChoices):
    DOCTOR = "doctor", "Doctor"
    PATIENT = "patient", "Patient"
    ADMIN = "admin", "Admin"


# Entering one of these binds the appointment to its slot
HOLDS_SLOT = frozenset({
    AppointmentStatus.PENDING_PATIENT_CONFIRMATION,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})

# Entering one of these frees the slot
FREES_SLOT = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.REJECTED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
})

TERMINAL_STATUSES = FREES_SLOT

_ESCAPES = [AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED, AppointmentStatus.NO_SHOW]

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.PENDING_PATIENT_CONFIRMATION,
        AppointmentStatus.CONFIRMED,
        *_ESCAPES,
    ],
    AppointmentStatus.PENDING_PATIENT_CONFIRMATION: [
        AppointmentStatus.CONFIRMED,
        *_ESCAPES,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        *_ESCAPES,
    ],
    AppointmentStatus.IN_PROGRESS: [
        AppointmentStatus.COMPLETED,
        *_ESCAPES,
    ],
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.CANCELLED: [],
    AppointmentStatus.REJECTED: [],
    AppointmentStatus.NO_SHOW: [],
}

# Statuses from which an appointment can be moved to another slot
RESCHEDULABLE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.PENDING_PATIENT_CONFIRMATION,
    AppointmentStatus.CONFIRMED,
})

# Only the treating doctor (or an admin) may move an appointment into these
DOCTOR_ONLY_TARGETS = frozenset({
    AppointmentStatus.REJECTED,
    AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
})


def can_transition(current, requested) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, [])


def is_terminal(status) -> bool:
    return status in TERMINAL_STATUSES


DEFAULT_REGULAR_HOURS = ("09:00", "17:00")
DEFAULT_APPOINTMENT_DURATION = 30
