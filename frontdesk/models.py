from django.conf import settings
from django.db import models

from appointments.constants import ConsultationType
from appointments.models import Appointment


class QueueEntryStatus(models.TextChoices):
    WAITING = "waiting", "Waiting"
    IN_PROGRESS = "in-progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    NO_SHOW = "no-show", "No Show"


class QueueDay(models.Model):
    """A doctor's live waiting room for one day."""

    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="queue_days",
    )
    date = models.DateField()
    is_active = models.BooleanField(default=True)
    current_delay = models.PositiveIntegerField(default=0)  # minutes
    average_consultation_time = models.PositiveIntegerField(default=15)  # minutes
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["doctor", "date"], name="uniq_queue_day"),
        ]
        ordering = ["-date"]

    def __str__(self):
        return f"Queue {self.doctor} {self.date}"


class QueueEntry(models.Model):
    queue = models.ForeignKey(QueueDay, on_delete=models.CASCADE, related_name="entries")
    appointment = models.ForeignKey(Appointment, on_delete=models.CASCADE, related_name="queue_entries")
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="queue_entries",
    )
    patient_name = models.CharField(max_length=120)
    scheduled_time = models.CharField(max_length=5)  # 'HH:MM'
    estimated_wait_time = models.PositiveIntegerField(default=0)  # minutes
    status = models.CharField(
        max_length=16,
        choices=QueueEntryStatus.choices,
        default=QueueEntryStatus.WAITING,
    )
    priority = models.IntegerField(default=0)  # higher goes first
    check_in_time = models.DateTimeField(null=True, blank=True)
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    consultation_type = models.CharField(
        max_length=16,
        choices=ConsultationType.choices,
        default=ConsultationType.IN_PERSON,
    )
    position = models.PositiveIntegerField(default=0)
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["queue", "appointment"], name="uniq_queue_appointment"),
        ]
        ordering = ["queue", "position", "id"]
        verbose_name_plural = "queue entries"

    def __str__(self):
        return f"{self.position}. {self.patient_name} {self.scheduled_time} ({self.status})"

    def as_dict(self):
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.pk,
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "patient_name": self.patient_name,
            "scheduled_time": self.scheduled_time,
            "estimated_wait_time": self.estimated_wait_time,
            "status": self.status,
            "priority": self.priority,
            "check_in_time": iso(self.check_in_time),
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "notes": self.notes,
            "consultation_type": self.consultation_type,
            "position": self.position,
        }
