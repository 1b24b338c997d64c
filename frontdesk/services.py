"""
QueueManager: per-doctor, per-day waiting room.

Entries are kept in display order (in-progress first, then priority
high-to-low, then scheduled time) and that order is persisted in
`position` after every change, so readers never have to re-sort.
"""

import logging
import math
from typing import Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from appointments.constants import AppointmentStatus
from appointments.exceptions import ConflictError, NotFoundError, ValidationError
from appointments.models import Appointment, ClinicSettings
from appointments.permissions import ensure_doctor_or_admin
from appointments.signals import publish_queue_update
from appointments.utils.db import translate_db_errors
from appointments.utils.time_utils import date_string, is_valid_hhmm, format_hhmm, parse_date

from .models import QueueDay, QueueEntry, QueueEntryStatus

logger = logging.getLogger(__name__)

# appointment status -> queue entry status; statuses not listed have no live entry
ENTRY_STATUS_FOR = {
    AppointmentStatus.CONFIRMED: QueueEntryStatus.WAITING,
    AppointmentStatus.IN_PROGRESS: QueueEntryStatus.IN_PROGRESS,
    AppointmentStatus.COMPLETED: QueueEntryStatus.COMPLETED,
    AppointmentStatus.CANCELLED: QueueEntryStatus.CANCELLED,
    AppointmentStatus.REJECTED: QueueEntryStatus.CANCELLED,
    AppointmentStatus.NO_SHOW: QueueEntryStatus.NO_SHOW,
}

# queue status set at the front desk -> appointment status it implies
APPOINTMENT_STATUS_FOR = {
    QueueEntryStatus.IN_PROGRESS: AppointmentStatus.IN_PROGRESS,
    QueueEntryStatus.COMPLETED: AppointmentStatus.COMPLETED,
    QueueEntryStatus.NO_SHOW: AppointmentStatus.NO_SHOW,
    QueueEntryStatus.CANCELLED: AppointmentStatus.CANCELLED,
}

# appointment statuses that put a patient into the queue
QUEUED_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS)

_EXTRA_FIELDS = ("notes", "priority", "check_in_time", "consultation_type")


def round_half_up(value) -> int:
    return int(math.floor(value + 0.5))


def sort_key(entry):
    return (
        0 if entry.status == QueueEntryStatus.IN_PROGRESS else 1,
        -entry.priority,
        entry.scheduled_time,
    )


def _today():
    return timezone.localdate()


class QueueManager:
    """Only writer of QueueDay / QueueEntry."""

    # ---- days ----------------------------------------------------------

    def get_or_create_day(self, doctor_id, date=None) -> QueueDay:
        day_date = self._date(date)
        day, created = QueueDay.objects.get_or_create(
            doctor_id=doctor_id,
            date=day_date,
            defaults={"average_consultation_time": ClinicSettings.load().default_consultation_time},
        )
        if created:
            logger.info("Opened queue for doctor %s on %s", doctor_id, day_date.isoformat())
        return day

    def _lock_day(self, doctor_id, date) -> QueueDay:
        day = self.get_or_create_day(doctor_id, date)
        return QueueDay.objects.select_for_update().get(pk=day.pk)

    def _date(self, date):
        if date is None:
            return _today()
        day_date = parse_date(date)
        if day_date is None:
            raise ValidationError("Invalid date format. Please use YYYY-MM-DD format", errors={"date": ["invalid"]})
        return day_date

    # ---- ordering / wait times -----------------------------------------

    def _resort(self, day) -> List[QueueEntry]:
        entries = sorted(day.entries.order_by("position", "id"), key=sort_key)
        for index, entry in enumerate(entries):
            entry.position = index
        QueueEntry.objects.bulk_update(entries, ["position"])
        return entries

    def calculate_wait_times(self, queue_day) -> List[QueueEntry]:
        """
        Waiting entries, in queue order, get 0, avg, 2*avg, ... minutes.
        Entries in any other status keep their last estimate.
        """
        waiting = list(
            queue_day.entries.filter(status=QueueEntryStatus.WAITING).order_by("position", "id")
        )
        cumulative = 0
        for entry in waiting:
            entry.estimated_wait_time = cumulative
            cumulative += queue_day.average_consultation_time
        QueueEntry.objects.bulk_update(waiting, ["estimated_wait_time"])
        return waiting

    def _refresh(self, day):
        """Re-apply ordering and wait times, then publish the new snapshot after commit."""
        self._resort(day)
        self.calculate_wait_times(day)
        day.save(update_fields=["average_consultation_time", "current_delay", "last_updated"])
        publish_queue_update(day.doctor_id, date_string(day.date), self.snapshot(day))

    # ---- entries -------------------------------------------------------

    @translate_db_errors
    def upsert_entry(self, doctor_id, date, entry_data: Dict) -> QueueEntry:
        appointment_id = entry_data.get("appointment_id")
        if not appointment_id:
            raise ValidationError("Appointment is required", errors={"appointment_id": ["This field is required."]})
        scheduled_time = entry_data.get("scheduled_time")
        if scheduled_time is not None and not is_valid_hhmm(str(scheduled_time)):
            raise ValidationError("Invalid time format. Use HH:MM", errors={"scheduled_time": ["invalid"]})

        with transaction.atomic():
            day = self._lock_day(doctor_id, date)
            entry = day.entries.filter(appointment_id=appointment_id).first()
            if entry is None:
                appointment = Appointment.objects.filter(pk=appointment_id).first()
                if appointment is None:
                    raise NotFoundError("Appointment not found", appointment_id=appointment_id)
                entry = QueueEntry(
                    queue=day,
                    appointment=appointment,
                    patient_id=entry_data.get("patient_id") or appointment.patient_id,
                    patient_name=entry_data.get("patient_name") or appointment.patient_name,
                    scheduled_time=format_hhmm(scheduled_time or appointment.start_time),
                    status=entry_data.get("status") or QueueEntryStatus.WAITING,
                    priority=entry_data.get("priority", 0),
                    notes=entry_data.get("notes") or "",
                    consultation_type=entry_data.get("consultation_type") or appointment.consultation_type,
                    check_in_time=entry_data.get("check_in_time"),
                    position=day.entries.count(),
                )
            else:
                for field in ("patient_name", "status", "priority", "notes", "consultation_type", "check_in_time"):
                    if field in entry_data:
                        setattr(entry, field, entry_data[field])
                if scheduled_time is not None:
                    entry.scheduled_time = format_hhmm(scheduled_time)

            if entry.status not in QueueEntryStatus.values:
                raise ValidationError("Invalid queue status", errors={"status": [f"Unknown status {entry.status!r}"]})
            if entry.status == QueueEntryStatus.IN_PROGRESS:
                self._ensure_single_in_progress(day, entry)

            entry.save()
            self._refresh(day)

        entry.refresh_from_db()
        return entry

    def _find_entry(self, appointment_id, date=None) -> QueueEntry:
        qs = QueueEntry.objects.filter(appointment_id=appointment_id).select_related("queue")
        if date is not None:
            qs = qs.filter(queue__date=self._date(date))
        entry = qs.order_by("-queue__date").first()
        if entry is None:
            raise NotFoundError("Queue entry not found", appointment_id=appointment_id)
        return entry

    def _ensure_single_in_progress(self, day, entry):
        other = day.entries.filter(status=QueueEntryStatus.IN_PROGRESS).exclude(pk=entry.pk).first()
        if other is not None:
            raise ConflictError(
                "Another patient is already in consultation",
                current_entry=other.as_dict(),
                appointment_id=entry.appointment_id,
            )

    def _apply_status(self, day, entry, status, now):
        """Set status with its timestamps; a completed visit updates the running average."""
        entry.status = status
        if status == QueueEntryStatus.IN_PROGRESS:
            entry.start_time = now
        elif status == QueueEntryStatus.COMPLETED:
            entry.end_time = now
            if entry.start_time:
                observed = round_half_up((entry.end_time - entry.start_time).total_seconds() / 60)
                day.average_consultation_time = round_half_up(
                    (day.average_consultation_time + observed) / 2
                )

    @translate_db_errors
    def update_entry_status(self, appointment_id, status, extra: Optional[Dict] = None, date=None) -> QueueEntry:
        if status not in QueueEntryStatus.values:
            raise ValidationError("Invalid queue status", errors={"status": [f"Unknown status {status!r}"]})

        with transaction.atomic():
            found = self._find_entry(appointment_id, date)
            day = QueueDay.objects.select_for_update().get(pk=found.queue_id)
            entry = QueueEntry.objects.get(pk=found.pk)

            if status == QueueEntryStatus.IN_PROGRESS:
                self._ensure_single_in_progress(day, entry)

            for field in _EXTRA_FIELDS:
                if extra and field in extra:
                    setattr(entry, field, extra[field])
            self._apply_status(day, entry, status, timezone.now())
            entry.save()
            self._refresh(day)

        logger.info("Queue entry for appointment %s -> %s", appointment_id, status)
        entry.refresh_from_db()
        return entry

    @translate_db_errors
    def check_in(self, appointment_id, date=None) -> QueueEntry:
        with transaction.atomic():
            found = self._find_entry(appointment_id, date)
            day = QueueDay.objects.select_for_update().get(pk=found.queue_id)
            entry = QueueEntry.objects.get(pk=found.pk)
            if entry.check_in_time is None:
                entry.check_in_time = timezone.now()
                entry.save(update_fields=["check_in_time", "last_updated"])
                self._refresh(day)
        return entry

    @translate_db_errors
    def set_priority(self, appointment_id, priority: int, date=None) -> QueueEntry:
        with transaction.atomic():
            found = self._find_entry(appointment_id, date)
            day = QueueDay.objects.select_for_update().get(pk=found.queue_id)
            entry = QueueEntry.objects.get(pk=found.pk)
            entry.priority = int(priority)
            entry.save(update_fields=["priority", "last_updated"])
            self._refresh(day)
        entry.refresh_from_db()
        return entry

    @translate_db_errors
    def set_delay(self, doctor_id, minutes: int, date=None, actor=None) -> QueueDay:
        ensure_doctor_or_admin(actor, doctor_id)
        try:
            minutes = int(minutes)
        except (TypeError, ValueError):
            raise ValidationError("Delay must be a number of minutes", errors={"delay": ["invalid"]})
        if minutes < 0:
            raise ValidationError("Delay cannot be negative", errors={"delay": ["invalid"]})

        with transaction.atomic():
            day = self._lock_day(doctor_id, date)
            day.current_delay = minutes
            self._refresh(day)
        logger.info("Queue delay for doctor %s on %s set to %d minutes", doctor_id, day.date, minutes)
        return day

    # ---- appointments --------------------------------------------------

    @translate_db_errors
    def sync_with_appointments(self, doctor_id, date=None) -> QueueDay:
        """
        Add confirmed / in-progress appointments of the day that have no
        entry yet, and bring existing entries in line with their appointment.
        """
        with transaction.atomic():
            day = self._lock_day(doctor_id, date)
            entries = {e.appointment_id: e for e in day.entries.all()}
            appointments = {
                a.pk: a for a in Appointment.objects.filter(doctor_id=doctor_id, date=day.date)
            }
            now = timezone.now()
            added = changed = 0

            for appointment in sorted(appointments.values(), key=lambda a: a.start_time):
                entry = entries.get(appointment.pk)
                target = ENTRY_STATUS_FOR.get(appointment.status, QueueEntryStatus.CANCELLED)

                if entry is None:
                    if appointment.status not in QUEUED_STATUSES:
                        continue
                    entry = QueueEntry(
                        queue=day,
                        appointment=appointment,
                        patient_id=appointment.patient_id,
                        patient_name=appointment.patient_name,
                        scheduled_time=appointment.start_time,
                        status=QueueEntryStatus.WAITING,
                        priority=0,
                        notes=appointment.symptoms,
                        consultation_type=appointment.consultation_type,
                        position=len(entries) + added,
                    )
                    added += 1
                elif entry.status == target and entry.scheduled_time == appointment.start_time:
                    continue
                else:
                    changed += 1

                entry.scheduled_time = appointment.start_time
                if entry.status != target:
                    if target == QueueEntryStatus.IN_PROGRESS and day.entries.filter(
                        status=QueueEntryStatus.IN_PROGRESS
                    ).exclude(pk=entry.pk).exists():
                        logger.warning(
                            "Appointment %s is in progress but doctor %s already has a patient in consultation",
                            appointment.pk, doctor_id,
                        )
                    else:
                        self._apply_status(day, entry, target, now)
                entry.save()

            # entries whose appointment moved to another day leave this queue
            moved = [e for pk, e in entries.items() if pk not in appointments and e.status == QueueEntryStatus.WAITING]
            for entry in moved:
                entry.status = QueueEntryStatus.CANCELLED
                entry.save(update_fields=["status", "last_updated"])

            self._refresh(day)

        logger.info(
            "Synced queue for doctor %s on %s: %d added, %d updated, %d moved out",
            doctor_id, day.date, added, changed, len(moved),
        )
        return day

    def reconcile_appointment(self, appointment_id) -> Optional[QueueDay]:
        """
        Bring the queue in line after an appointment changed. Only today's
        queue, or a day that already has one, is touched.
        """
        appointment = Appointment.objects.filter(pk=appointment_id).first()
        if appointment is None:
            return None

        for day_id in (
            QueueEntry.objects.filter(appointment_id=appointment_id)
            .exclude(queue__date=appointment.date)
            .values_list("queue_id", flat=True)
        ):
            day = QueueDay.objects.get(pk=day_id)
            self.sync_with_appointments(day.doctor_id, day.date)

        has_queue = QueueDay.objects.filter(doctor_id=appointment.doctor_id, date=appointment.date).exists()
        if appointment.date == _today() or has_queue:
            return self.sync_with_appointments(appointment.doctor_id, appointment.date)
        return None

    # ---- reads ---------------------------------------------------------

    def snapshot(self, day) -> Dict:
        entries = list(day.entries.order_by("position", "id"))
        current = next((e for e in entries if e.status == QueueEntryStatus.IN_PROGRESS), None)
        return {
            "id": day.pk,
            "doctor_id": day.doctor_id,
            "date": date_string(day.date),
            "is_active": day.is_active,
            "current_delay": day.current_delay,
            "average_consultation_time": day.average_consultation_time,
            "entries": [e.as_dict() for e in entries],
            "current_entry": current.as_dict() if current else None,
        }

    def get_status(self, doctor_id, date=None) -> Dict:
        day = QueueDay.objects.filter(doctor_id=doctor_id, date=self._date(date)).first()
        if day is None:
            raise NotFoundError("Queue not found", doctor_id=doctor_id, date=date_string(self._date(date)))
        return self.snapshot(day)
