from django.conf import settings
from django.db import models
from django.db.models import Q

from .constants import (
    DEFAULT_APPOINTMENT_DURATION,
    HOLDS_SLOT,
    ActorRole,
    AppointmentKind,
    AppointmentStatus,
    BreakKind,
    ConsultationType,
    PaymentStatus,
    SlotKind,
)
from .utils.time_utils import date_string


class Appointment(models.Model):
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="doctor_appointments",
    )
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="patient_appointments",
    )
    patient_name = models.CharField(max_length=120)

    date = models.DateField()
    # raw 'YYYY-MM-DD' kept next to the date so re-rendering never shifts the day
    date_string = models.CharField(max_length=10)
    start_time = models.CharField(max_length=5)
    end_time = models.CharField(max_length=5)

    kind = models.CharField(
        max_length=16,
        choices=AppointmentKind.choices,
        default=AppointmentKind.REGULAR,
    )
    consultation_type = models.CharField(max_length=16, choices=ConsultationType.choices)
    status = models.CharField(
        max_length=32,
        choices=AppointmentStatus.choices,
        default=AppointmentStatus.PENDING,
    )
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    duration = models.PositiveIntegerField(default=DEFAULT_APPOINTMENT_DURATION)  # minutes
    reminder_sent = models.BooleanField(default=False)

    symptoms = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    cancelled_by = models.CharField(max_length=16, choices=ActorRole.choices, blank=True)
    cancel_reason = models.TextField(blank=True)
    reschedule_requested_by = models.CharField(max_length=16, choices=ActorRole.choices, blank=True)

    visit_started_at = models.DateTimeField(null=True, blank=True)
    visit_ended_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["doctor", "date"], name="appt_doctor_date_idx"),
            models.Index(fields=["patient", "date"], name="appt_patient_date_idx"),
            models.Index(fields=["status"], name="appt_status_idx"),
        ]
        constraints = [
            # at most one slot-holding appointment per doctor/day/start
            models.UniqueConstraint(
                fields=["doctor", "date", "start_time"],
                condition=Q(status__in=sorted(HOLDS_SLOT)),
                name="uniq_slot_holding_appointment",
            ),
        ]
        ordering = ["-date", "start_time"]

    def __str__(self):
        return f"{self.patient_name} - {self.date_string} {self.start_time} ({self.status})"

    def save(self, *args, **kwargs):
        if self.date:
            self.date_string = date_string(self.date)
        super().save(*args, **kwargs)

    @property
    def holds_slot(self) -> bool:
        return self.status in HOLDS_SLOT

    def get_duration(self) -> int:
        """Actual visit length in minutes when both stamps exist, else the booked duration."""
        if self.visit_started_at and self.visit_ended_at:
            return round((self.visit_ended_at - self.visit_started_at).total_seconds() / 60)
        return self.duration


class StatusHistoryEntry(models.Model):
    """Append-only audit trail; one row per status change."""

    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.PROTECT,
        related_name="status_history",
    )
    status = models.CharField(max_length=32, choices=AppointmentStatus.choices)
    timestamp = models.DateTimeField(auto_now_add=True)
    actor_id = models.BigIntegerField(null=True, blank=True)
    actor_role = models.CharField(max_length=16, choices=ActorRole.choices, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["timestamp", "id"]
        verbose_name_plural = "status history"

    def __str__(self):
        return f"#{self.appointment_id} -> {self.status} by {self.actor_role or 'system'}"


class DoctorSchedule(models.Model):
    """
    A doctor's default working template. Days without their own
    AvailabilityDay are generated from it.
    """

    doctor = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="schedule",
    )
    regular_start = models.CharField(max_length=5, default="09:00")
    regular_end = models.CharField(max_length=5, default="17:00")
    emergency_start = models.CharField(max_length=5, blank=True)
    emergency_end = models.CharField(max_length=5, blank=True)
    slot_duration = models.PositiveIntegerField(default=30)
    # [{"start": "13:00", "end": "14:00", "kind": "lunch"}, ...]
    breaks = models.JSONField(default=list, blank=True)
    # 0=Mon ... 6=Sun (matches Python's weekday())
    working_days = models.JSONField(default=list, blank=True)

    def __str__(self):
        return f"{self.doctor} {self.regular_start}-{self.regular_end} ({self.slot_duration}m)"

    def works_on(self, day) -> bool:
        return not self.working_days or day.weekday() in self.working_days

    @property
    def emergency_hours(self):
        if self.emergency_start and self.emergency_end:
            return (self.emergency_start, self.emergency_end)
        return None


class AvailabilityDay(models.Model):
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="availability_days",
    )
    date = models.DateField()
    is_available = models.BooleanField(default=True)
    regular_start = models.CharField(max_length=5, default="09:00")
    regular_end = models.CharField(max_length=5, default="17:00")
    emergency_start = models.CharField(max_length=5, blank=True)
    emergency_end = models.CharField(max_length=5, blank=True)
    slot_duration = models.PositiveIntegerField(default=30)
    timezone = models.CharField(max_length=64, default="UTC")
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["doctor", "date"], name="uniq_availability_day"),
        ]
        ordering = ["doctor", "date"]

    def __str__(self):
        return f"{self.doctor} {self.date} {self.regular_start}-{self.regular_end}"

    @property
    def emergency_hours(self):
        if self.emergency_start and self.emergency_end:
            return (self.emergency_start, self.emergency_end)
        return None


class Break(models.Model):
    day = models.ForeignKey(AvailabilityDay, on_delete=models.CASCADE, related_name="breaks")
    start_time = models.CharField(max_length=5)
    end_time = models.CharField(max_length=5)
    kind = models.CharField(max_length=8, choices=BreakKind.choices, default=BreakKind.QUICK)
    recurring = models.BooleanField(default=False)

    class Meta:
        ordering = ["start_time"]

    def __str__(self):
        return f"{self.start_time}-{self.end_time} ({self.kind})"


class TimeSlot(models.Model):
    # is_booked/appointment/patient are only written by SlotStore
    day = models.ForeignKey(AvailabilityDay, on_delete=models.CASCADE, related_name="time_slots")
    start_time = models.CharField(max_length=5)
    end_time = models.CharField(max_length=5)
    is_booked = models.BooleanField(default=False)
    is_break = models.BooleanField(default=False)
    kind = models.CharField(max_length=16, choices=SlotKind.choices, default=SlotKind.REGULAR)
    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    patient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["day", "start_time"], name="uniq_slot_start"),
        ]
        ordering = ["start_time"]

    def __str__(self):
        flag = "booked" if self.is_booked else ("break" if self.is_break else "free")
        return f"{self.start_time}-{self.end_time} [{flag}]"

    def as_dict(self):
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "is_booked": self.is_booked,
            "is_break": self.is_break,
            "kind": self.kind,
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
        }


class ClinicSettings(models.Model):
    """
    Clinic-wide tunables persisted as a single row. Read through load();
    initial values come from Django settings.
    """

    SINGLETON_PK = 1

    clinic_name = models.CharField(max_length=120, blank=True)
    frontend_url = models.URLField(blank=True)
    reminder_window_start = models.PositiveIntegerField(default=50)  # minutes before start
    reminder_window_end = models.PositiveIntegerField(default=70)
    reminder_interval = models.PositiveIntegerField(default=5)  # minutes between scans
    default_slot_duration = models.PositiveIntegerField(default=30)
    default_consultation_time = models.PositiveIntegerField(default=15)
    status_emails_enabled = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "clinic settings"

    def __str__(self):
        return self.clinic_name or "Clinic settings"

    @classmethod
    def load(cls) -> "ClinicSettings":
        obj, _ = cls.objects.get_or_create(
            pk=cls.SINGLETON_PK,
            defaults={
                "clinic_name": settings.CLINIC_NAME,
                "frontend_url": settings.FRONTEND_URL,
                "reminder_window_start": settings.REMINDER_WINDOW_START,
                "reminder_window_end": settings.REMINDER_WINDOW_END,
                "reminder_interval": settings.REMINDER_INTERVAL_MINUTES,
                "default_slot_duration": settings.DEFAULT_SLOT_DURATION,
                "default_consultation_time": settings.DEFAULT_CONSULTATION_TIME,
            },
        )
        return obj

    def save(self, *args, **kwargs):
        self.pk = self.SINGLETON_PK
        super().save(*args, **kwargs)
