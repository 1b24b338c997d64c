import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


STATUS_CHOICES = [
    ("pending", "Pending"),
    ("pending_patient_confirmation", "Pending Patient Confirmation"),
    ("confirmed", "Confirmed"),
    ("in-progress", "In Progress"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
    ("rejected", "Rejected"),
    ("no-show", "No Show"),
]

ROLE_CHOICES = [("doctor", "Doctor"), ("patient", "Patient"), ("admin", "Admin")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Appointment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("patient_name", models.CharField(max_length=120)),
                ("date", models.DateField()),
                ("date_string", models.CharField(max_length=10)),
                ("start_time", models.CharField(max_length=5)),
                ("end_time", models.CharField(max_length=5)),
                ("kind", models.CharField(
                    choices=[("regular", "Regular"), ("follow-up", "Follow-up"), ("emergency", "Emergency")],
                    default="regular", max_length=16,
                )),
                ("consultation_type", models.CharField(
                    choices=[("video", "Video Consultation"), ("in-person", "In-Person Visit")],
                    max_length=16,
                )),
                ("status", models.CharField(choices=STATUS_CHOICES, default="pending", max_length=32)),
                ("payment_status", models.CharField(
                    choices=[("pending", "Pending"), ("completed", "Completed"), ("refunded", "Refunded")],
                    default="pending", max_length=16,
                )),
                ("payment_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("duration", models.PositiveIntegerField(default=30)),
                ("reminder_sent", models.BooleanField(default=False)),
                ("symptoms", models.TextField(blank=True)),
                ("notes", models.TextField(blank=True)),
                ("cancelled_by", models.CharField(blank=True, choices=ROLE_CHOICES, max_length=16)),
                ("cancel_reason", models.TextField(blank=True)),
                ("reschedule_requested_by", models.CharField(blank=True, choices=ROLE_CHOICES, max_length=16)),
                ("visit_started_at", models.DateTimeField(blank=True, null=True)),
                ("visit_ended_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("doctor", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="doctor_appointments",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("patient", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="patient_appointments",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ["-date", "start_time"],
                "indexes": [
                    models.Index(fields=["doctor", "date"], name="appt_doctor_date_idx"),
                    models.Index(fields=["patient", "date"], name="appt_patient_date_idx"),
                    models.Index(fields=["status"], name="appt_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["confirmed", "in-progress", "pending_patient_confirmation"])),
                        fields=("doctor", "date", "start_time"),
                        name="uniq_slot_holding_appointment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AvailabilityDay",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("is_available", models.BooleanField(default=True)),
                ("regular_start", models.CharField(default="09:00", max_length=5)),
                ("regular_end", models.CharField(default="17:00", max_length=5)),
                ("emergency_start", models.CharField(blank=True, max_length=5)),
                ("emergency_end", models.CharField(blank=True, max_length=5)),
                ("slot_duration", models.PositiveIntegerField(default=30)),
                ("timezone", models.CharField(default="UTC", max_length=64)),
                ("last_updated", models.DateTimeField(auto_now=True)),
                ("doctor", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="availability_days",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ["doctor", "date"],
                "constraints": [
                    models.UniqueConstraint(fields=("doctor", "date"), name="uniq_availability_day"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Break",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_time", models.CharField(max_length=5)),
                ("end_time", models.CharField(max_length=5)),
                ("kind", models.CharField(
                    choices=[("lunch", "Lunch"), ("quick", "Quick"), ("other", "Other")],
                    default="quick", max_length=8,
                )),
                ("recurring", models.BooleanField(default=False)),
                ("day", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="breaks",
                    to="appointments.availabilityday",
                )),
            ],
            options={
                "ordering": ["start_time"],
            },
        ),
        migrations.CreateModel(
            name="ClinicSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("clinic_name", models.CharField(blank=True, max_length=120)),
                ("frontend_url", models.URLField(blank=True)),
                ("reminder_window_start", models.PositiveIntegerField(default=50)),
                ("reminder_window_end", models.PositiveIntegerField(default=70)),
                ("reminder_interval", models.PositiveIntegerField(default=5)),
                ("default_slot_duration", models.PositiveIntegerField(default=30)),
                ("default_consultation_time", models.PositiveIntegerField(default=15)),
                ("status_emails_enabled", models.BooleanField(default=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name_plural": "clinic settings",
            },
        ),
        migrations.CreateModel(
            name="DoctorSchedule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("regular_start", models.CharField(default="09:00", max_length=5)),
                ("regular_end", models.CharField(default="17:00", max_length=5)),
                ("emergency_start", models.CharField(blank=True, max_length=5)),
                ("emergency_end", models.CharField(blank=True, max_length=5)),
                ("slot_duration", models.PositiveIntegerField(default=30)),
                ("breaks", models.JSONField(blank=True, default=list)),
                ("working_days", models.JSONField(blank=True, default=list)),
                ("doctor", models.OneToOneField(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="schedule",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
        ),
        migrations.CreateModel(
            name="StatusHistoryEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(choices=STATUS_CHOICES, max_length=32)),
                ("timestamp", models.DateTimeField(auto_now_add=True)),
                ("actor_id", models.BigIntegerField(blank=True, null=True)),
                ("actor_role", models.CharField(blank=True, choices=ROLE_CHOICES, max_length=16)),
                ("notes", models.TextField(blank=True)),
                ("appointment", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="status_history",
                    to="appointments.appointment",
                )),
            ],
            options={
                "ordering": ["timestamp", "id"],
                "verbose_name_plural": "status history",
            },
        ),
        migrations.CreateModel(
            name="TimeSlot",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_time", models.CharField(max_length=5)),
                ("end_time", models.CharField(max_length=5)),
                ("is_booked", models.BooleanField(default=False)),
                ("is_break", models.BooleanField(default=False)),
                ("kind", models.CharField(
                    choices=[("regular", "Regular"), ("emergency", "Emergency")],
                    default="regular", max_length=16,
                )),
                ("appointment", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to="appointments.appointment",
                )),
                ("day", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="time_slots",
                    to="appointments.availabilityday",
                )),
                ("patient", models.ForeignKey(
                    blank=True, null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ["start_time"],
                "constraints": [
                    models.UniqueConstraint(fields=("day", "start_time"), name="uniq_slot_start"),
                ],
            },
        ),
    ]
