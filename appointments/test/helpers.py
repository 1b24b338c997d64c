from datetime import date

from django.contrib.auth import get_user_model

from appointments.constants import ActorRole, AppointmentStatus
from appointments.models import Appointment
from appointments.permissions import Actor

DAY = date(2030, 3, 4)  # a Monday


def make_user(username, **extra):
    User = get_user_model()
    extra.setdefault("email", f"{username}@test.com")
    return User.objects.create_user(username, password="pass12345", **extra)


def actor_for(user, role):
    return Actor(user.pk, role)


def doctor_actor(user):
    return actor_for(user, ActorRole.DOCTOR)


def patient_actor(user):
    return actor_for(user, ActorRole.PATIENT)


def make_appointment(doctor, patient, start="10:00", end="10:30", day=DAY,
                     status=AppointmentStatus.CONFIRMED, **extra):
    """Straight ORM insert for tests that do not care about the booking path."""
    extra.setdefault("consultation_type", "in-person")
    return Appointment.objects.create(
        doctor=doctor,
        patient=patient,
        patient_name=patient.get_full_name() or patient.get_username(),
        date=day,
        start_time=start,
        end_time=end,
        status=status,
        **extra,
    )
