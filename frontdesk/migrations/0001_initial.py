import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("appointments", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="QueueDay",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("is_active", models.BooleanField(default=True)),
                ("current_delay", models.PositiveIntegerField(default=0)),
                ("average_consultation_time", models.PositiveIntegerField(default=15)),
                ("last_updated", models.DateTimeField(auto_now=True)),
                ("doctor", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="queue_days",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [
                    models.UniqueConstraint(fields=("doctor", "date"), name="uniq_queue_day"),
                ],
            },
        ),
        migrations.CreateModel(
            name="QueueEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("patient_name", models.CharField(max_length=120)),
                ("scheduled_time", models.CharField(max_length=5)),
                ("estimated_wait_time", models.PositiveIntegerField(default=0)),
                ("status", models.CharField(
                    choices=[
                        ("waiting", "Waiting"),
                        ("in-progress", "In Progress"),
                        ("completed", "Completed"),
                        ("cancelled", "Cancelled"),
                        ("no-show", "No Show"),
                    ],
                    default="waiting", max_length=16,
                )),
                ("priority", models.IntegerField(default=0)),
                ("check_in_time", models.DateTimeField(blank=True, null=True)),
                ("start_time", models.DateTimeField(blank=True, null=True)),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("consultation_type", models.CharField(
                    choices=[("video", "Video Consultation"), ("in-person", "In-Person Visit")],
                    default="in-person", max_length=16,
                )),
                ("position", models.PositiveIntegerField(default=0)),
                ("last_updated", models.DateTimeField(auto_now=True)),
                ("appointment", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="queue_entries",
                    to="appointments.appointment",
                )),
                ("patient", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="queue_entries",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("queue", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="entries",
                    to="frontdesk.queueday",
                )),
            ],
            options={
                "ordering": ["queue", "position", "id"],
                "verbose_name_plural": "queue entries",
                "constraints": [
                    models.UniqueConstraint(fields=("queue", "appointment"), name="uniq_queue_appointment"),
                ],
            },
        ),
    ]
