"""
Role checks for the scheduling core.

Who the caller is comes from the identity collaborator as an Actor; this
module only decides whether that actor may touch a given appointment or day.
"""

from dataclasses import dataclass

from .constants import DOCTOR_ONLY_TARGETS, ActorRole, AppointmentStatus
from .exceptions import AuthorizationError, ValidationError


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    def __post_init__(self):
        if self.role not in ActorRole.values:
            raise ValidationError(f"Unknown actor role {self.role!r}", errors={"role": ["invalid"]})

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_doctor(self) -> bool:
        return self.role == ActorRole.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role == ActorRole.PATIENT


def ensure_party(actor, appointment):
    """Patients only act on their own appointments, doctors only on their own schedule."""
    if actor is None or actor.is_admin:
        return
    if actor.is_doctor and appointment.doctor_id == actor.user_id:
        return
    if actor.is_patient and appointment.patient_id == actor.user_id:
        return
    raise AuthorizationError(
        "Unauthorized to update this appointment",
        appointment_id=appointment.pk,
        actor_id=actor.user_id,
        actor_role=actor.role,
    )


def ensure_can_transition(actor, appointment, new_status):
    ensure_party(actor, appointment)
    if actor is None or actor.is_admin:
        return

    if new_status in DOCTOR_ONLY_TARGETS and not actor.is_doctor:
        raise AuthorizationError(
            f"Only the doctor can mark an appointment as {new_status}",
            requested_status=new_status,
            actor_role=actor.role,
        )

    if new_status == AppointmentStatus.CONFIRMED:
        if appointment.status == AppointmentStatus.PENDING_PATIENT_CONFIRMATION:
            # the party that asked for the new time cannot accept it on the other's behalf
            requested_by = appointment.reschedule_requested_by
            if requested_by and requested_by == actor.role:
                raise AuthorizationError(
                    "The reschedule must be confirmed by the other party",
                    requested_status=new_status,
                    actor_role=actor.role,
                )
        elif not actor.is_doctor:
            raise AuthorizationError(
                "Only the doctor can confirm a booking request",
                requested_status=new_status,
                actor_role=actor.role,
            )


def ensure_doctor_or_admin(actor, doctor_id):
    """Availability and queue settings belong to the doctor who owns them."""
    if actor is None or actor.is_admin:
        return
    if actor.is_doctor and actor.user_id == doctor_id:
        return
    raise AuthorizationError(
        "Only the doctor can change this schedule",
        doctor_id=doctor_id,
        actor_role=actor.role,
    )
