"""
AppointmentLifecycle: the only writer of Appointment and its status history.

Slot changes and the status write happen in one transaction; the domain
event is published only after that transaction commits.
"""

import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from .constants import (
    FREES_SLOT,
    HOLDS_SLOT,
    RESCHEDULABLE_STATUSES,
    AppointmentKind,
    AppointmentStatus,
    SlotKind,
    can_transition,
)
from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .forms import BookingForm, RescheduleForm
from .models import Appointment, StatusHistoryEntry
from .permissions import ensure_can_transition, ensure_party
from .signals import publish_status_change
from .slots import SlotStore
from .utils.db import translate_db_errors
from .utils.time_utils import date_string, parse_date, to_minutes

logger = logging.getLogger(__name__)


def _slot_bounds(slot):
    """Accept {'start_time', 'end_time'} / {'start', 'end'} mappings or a (start, end) pair."""
    if isinstance(slot, dict):
        return slot.get("start_time") or slot.get("start"), slot.get("end_time") or slot.get("end")
    start, end = slot
    return start, end


class AppointmentLifecycle:
    def __init__(self, slot_store=None):
        self.slots = slot_store or SlotStore()

    # ---- queries -------------------------------------------------------

    def get(self, appointment_id) -> Appointment:
        try:
            return Appointment.objects.select_related("doctor", "patient").get(pk=appointment_id)
        except Appointment.DoesNotExist:
            raise NotFoundError("Appointment not found", appointment_id=appointment_id)

    def history(self, appointment_id):
        return list(self.get(appointment_id).status_history.all())

    def appointments_for_day(self, doctor_id, date, statuses=None):
        qs = Appointment.objects.filter(doctor_id=doctor_id, date=parse_date(date))
        if statuses:
            qs = qs.filter(status__in=list(statuses))
        return qs.select_related("patient").order_by("start_time")

    # ---- commands ------------------------------------------------------

    @translate_db_errors
    def book(self, doctor_id, patient_id, date, slot, mode, symptoms="",
             kind=AppointmentKind.REGULAR, patient_name="", actor=None) -> Appointment:
        """
        Create a pending appointment for a free slot. Pending does not hold
        the slot; confirming it does.
        """
        start_time, end_time = _slot_bounds(slot)
        form = BookingForm(data={
            "doctor_id": doctor_id,
            "patient_id": patient_id,
            "patient_name": patient_name,
            "date": date_string(date) if parse_date(date) else date,
            "start_time": start_time,
            "end_time": end_time,
            "consultation_type": mode,
            "kind": kind,
            "symptoms": symptoms,
        })
        if not form.is_valid():
            raise ValidationError.from_form(form)
        data = form.cleaned_data

        if actor is not None and actor.is_patient and actor.user_id != data["patient_id"]:
            raise AuthorizationError("Patients can only book for themselves", actor_role=actor.role)

        User = get_user_model()
        users = User.objects.in_bulk([data["doctor_id"], data["patient_id"]])
        if data["doctor_id"] not in users:
            raise NotFoundError("Doctor not found", doctor_id=data["doctor_id"])
        if data["patient_id"] not in users:
            raise NotFoundError("Patient not found", patient_id=data["patient_id"])
        patient = users[data["patient_id"]]

        check = self.slots.check(data["doctor_id"], data["date"], data["start_time"], data["end_time"])
        if not check.available:
            logger.info(
                "Booking refused for doctor %s on %s at %s: %s",
                data["doctor_id"], data["date"], data["start_time"], check.reason,
            )
            raise ConflictError(
                f"Slot unavailable: {check.reason}",
                reason=check.reason,
                slot={"start_time": data["start_time"], "end_time": data["end_time"]},
                alternatives=check.alternatives,
            )

        if data["kind"] == AppointmentKind.EMERGENCY and check.slot_kind != SlotKind.EMERGENCY:
            raise ValidationError(
                "Emergency booking not allowed in regular slots",
                errors={"kind": ["Emergency bookings need an emergency slot."]},
            )

        with transaction.atomic():
            appointment = Appointment.objects.create(
                doctor_id=data["doctor_id"],
                patient_id=data["patient_id"],
                patient_name=data["patient_name"] or patient.get_full_name() or patient.get_username(),
                date=data["date"],
                start_time=data["start_time"],
                end_time=data["end_time"],
                kind=data["kind"],
                consultation_type=data["consultation_type"],
                symptoms=data["symptoms"],
                duration=to_minutes(data["end_time"]) - to_minutes(data["start_time"]),
                status=AppointmentStatus.PENDING,
            )
            self._record(appointment, AppointmentStatus.PENDING, actor, "Appointment requested")
            publish_status_change(appointment.pk, None, AppointmentStatus.PENDING, actor)

        logger.info(
            "Booked appointment %s: doctor %s, patient %s, %s %s",
            appointment.pk, appointment.doctor_id, appointment.patient_id,
            appointment.date_string, appointment.start_time,
        )
        return appointment

    @translate_db_errors
    def transition(self, appointment_id, new_status, actor, notes="") -> Appointment:
        if new_status not in AppointmentStatus.values:
            raise ValidationError("Invalid appointment status", errors={"status": [f"Unknown status {new_status!r}"]})
        new_status = AppointmentStatus(new_status)

        try:
            with transaction.atomic():
                appointment = self._lock(appointment_id)
                ensure_can_transition(actor, appointment, new_status)

                old_status = AppointmentStatus(appointment.status)
                if not can_transition(old_status, new_status):
                    logger.info(
                        "Rejected transition for appointment %s: %s -> %s",
                        appointment.pk, old_status, new_status,
                    )
                    raise ConflictError(
                        f"Cannot change appointment status from {old_status} to {new_status}",
                        appointment_id=appointment.pk,
                        current_status=old_status,
                        requested_status=new_status,
                    )

                self._apply_slot_effect(appointment, old_status, new_status)
                self._stamp(appointment, new_status, actor, notes)
                appointment.status = new_status
                appointment.save()
                self._record(appointment, new_status, actor, notes)
                publish_status_change(appointment.pk, old_status, new_status, actor)
        except IntegrityError as exc:
            # the partial unique index saw another appointment holding this slot
            raise ConflictError(
                "Slot unavailable: ALREADY_BOOKED",
                reason="ALREADY_BOOKED",
                appointment_id=appointment_id,
                requested_status=new_status,
            ) from exc

        logger.info("Appointment %s: %s -> %s", appointment.pk, old_status, new_status)
        return appointment

    @translate_db_errors
    def reschedule(self, appointment_id, new_date, new_slot, requires_confirmation, actor, notes="") -> Appointment:
        """
        Move the appointment to another slot. The new slot is held right away;
        the status becomes pending_patient_confirmation when the other party
        has to accept the new time, confirmed otherwise.
        """
        start_time, end_time = _slot_bounds(new_slot)
        form = RescheduleForm(data={
            "date": date_string(new_date) if parse_date(new_date) else new_date,
            "start_time": start_time,
            "end_time": end_time,
        })
        if not form.is_valid():
            raise ValidationError.from_form(form)
        data = form.cleaned_data

        target = (
            AppointmentStatus.PENDING_PATIENT_CONFIRMATION if requires_confirmation
            else AppointmentStatus.CONFIRMED
        )

        try:
            with transaction.atomic():
                appointment = self._lock(appointment_id)
                ensure_party(actor, appointment)
                if actor is not None and actor.is_patient and not requires_confirmation:
                    raise AuthorizationError(
                        "A patient reschedule has to be confirmed by the doctor",
                        actor_role=actor.role,
                    )

                old_status = AppointmentStatus(appointment.status)
                if old_status not in RESCHEDULABLE_STATUSES:
                    raise ConflictError(
                        f"Cannot reschedule an appointment in {old_status} status",
                        appointment_id=appointment.pk,
                        current_status=old_status,
                        requested_status=target,
                    )

                old_label = f"{appointment.date_string} {appointment.start_time}"
                if old_status in HOLDS_SLOT:
                    self.slots.release(
                        appointment.doctor_id, appointment.date, appointment.start_time,
                        appointment_id=appointment.pk,
                    )
                self.slots.reserve(
                    appointment.doctor_id, data["date"], data["start_time"],
                    appointment.pk, appointment.patient_id,
                )

                appointment.date = data["date"]
                appointment.start_time = data["start_time"]
                appointment.end_time = data["end_time"]
                appointment.duration = to_minutes(data["end_time"]) - to_minutes(data["start_time"])
                appointment.reminder_sent = False
                appointment.reschedule_requested_by = actor.role if (requires_confirmation and actor) else ""
                appointment.status = target
                appointment.save()

                history_notes = f"Rescheduled from {old_label} to {appointment.date_string} {appointment.start_time}"
                if notes:
                    history_notes = f"{history_notes}: {notes}"
                self._record(appointment, target, actor, history_notes)
                publish_status_change(appointment.pk, old_status, target, actor)
        except IntegrityError as exc:
            raise ConflictError(
                "Slot unavailable: ALREADY_BOOKED",
                reason="ALREADY_BOOKED",
                appointment_id=appointment_id,
                slot={"start_time": data["start_time"], "end_time": data["end_time"]},
            ) from exc

        logger.info("Appointment %s rescheduled: %s", appointment.pk, history_notes)
        return appointment

    # ---- helpers -------------------------------------------------------

    def _lock(self, appointment_id) -> Appointment:
        try:
            return Appointment.objects.select_for_update().get(pk=appointment_id)
        except Appointment.DoesNotExist:
            raise NotFoundError("Appointment not found", appointment_id=appointment_id)

    def _apply_slot_effect(self, appointment, old_status, new_status):
        if new_status in HOLDS_SLOT and old_status not in HOLDS_SLOT:
            self.slots.reserve(
                appointment.doctor_id, appointment.date, appointment.start_time,
                appointment.pk, appointment.patient_id,
            )
        elif new_status in FREES_SLOT:
            self.slots.release(
                appointment.doctor_id, appointment.date, appointment.start_time,
                appointment_id=appointment.pk,
            )

    def _stamp(self, appointment, new_status, actor, notes):
        now = timezone.now()
        if new_status == AppointmentStatus.IN_PROGRESS:
            appointment.visit_started_at = now
        elif new_status == AppointmentStatus.COMPLETED and appointment.visit_started_at:
            appointment.visit_ended_at = now
        elif new_status == AppointmentStatus.CANCELLED:
            appointment.cancelled_by = actor.role if actor else ""
            appointment.cancel_reason = notes or "No reason provided"
        if notes:
            appointment.notes = notes

    def _record(self, appointment, status, actor, notes=""):
        return StatusHistoryEntry.objects.create(
            appointment=appointment,
            status=status,
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role if actor else "",
            notes=notes or "",
        )
