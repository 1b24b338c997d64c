"""
Outbound notifications.

The dispatcher used by the reminder job and the status receivers is picked
by the NOTIFICATION_DISPATCHER setting (dotted path), so deployments can
swap email for SMS or push without touching the core.
"""

import logging

import requests as http_requests
from django.conf import settings
from django.core.mail import send_mail
from django.utils.module_loading import import_string

from .constants import AppointmentStatus, ConsultationType
from .models import ClinicSettings
from .utils.time_utils import format_display

logger = logging.getLogger(__name__)


def display_name(user):
    return user.get_full_name() or user.get_username()


class NotificationDispatcher:
    """Interface. send_reminder must return True only when the reminder went out."""

    def send_reminder(self, appointment, patient, doctor) -> bool:
        raise NotImplementedError

    def send_status_change(self, appointment, recipient, new_status) -> None:
        raise NotImplementedError


class EmailNotificationDispatcher(NotificationDispatcher):

    def send_reminder(self, appointment, patient, doctor) -> bool:
        """
        Remind both parties. True when at least one reminder went out, so a
        patient without email does not keep the doctor's reminder retrying.
        """
        clinic = ClinicSettings.load()
        patient_sent = self._mail_reminder(
            appointment, patient,
            f"Upcoming Appointment Reminder - {clinic.clinic_name}",
            self._patient_reminder(appointment, patient, doctor, clinic),
        )
        doctor_sent = self._mail_reminder(
            appointment, doctor,
            f"Upcoming Appointment - {display_name(patient)} - {clinic.clinic_name}",
            self._doctor_reminder(appointment, patient, doctor, clinic),
        )
        notified = RealtimePublisher().publish("appointmentReminder", f"doctor-{doctor.pk}", {
            "appointment_id": appointment.pk,
            "patient_name": appointment.patient_name or display_name(patient),
            "date": appointment.date_string,
            "start_time": appointment.start_time,
            "consultation_type": appointment.consultation_type,
        })
        return patient_sent or doctor_sent or notified

    def _patient_reminder(self, appointment, patient, doctor, clinic):
        if appointment.consultation_type == ConsultationType.VIDEO:
            preparation = [
                "Ensure you have a stable internet connection and your device is charged.",
                "Find a quiet, well-lit place for your video consultation.",
            ]
        else:
            preparation = [
                "Plan to arrive at the clinic at least 10 minutes early.",
                "Bring any relevant medical records or test results.",
            ]

        lines = [
            f"Dear {display_name(patient)},",
            "",
            "This is a reminder that your appointment is scheduled in 1 hour.",
            "",
            f"Date: {appointment.date:%A, %B %d, %Y}",
            f"Time: {format_display(appointment.start_time)} - {format_display(appointment.end_time)}",
            f"Doctor: Dr. {display_name(doctor)}",
            f"Consultation Type: {appointment.get_consultation_type_display()}",
            "",
            "Please be ready 5-10 minutes before your scheduled time.",
            *preparation,
            "",
            f"Manage your appointment: {clinic.frontend_url}/patient-dashboard/appointments",
            "",
            f"Thank you for choosing {clinic.clinic_name} for your healthcare needs.",
        ]
        return "\n".join(lines)

    def _doctor_reminder(self, appointment, patient, doctor, clinic):
        lines = [
            f"Dear Dr. {display_name(doctor)},",
            "",
            f"You have an appointment with {appointment.patient_name or display_name(patient)} in 1 hour.",
            "",
            f"Date: {appointment.date:%A, %B %d, %Y}",
            f"Time: {format_display(appointment.start_time)} - {format_display(appointment.end_time)}",
            f"Consultation Type: {appointment.get_consultation_type_display()}",
        ]
        if appointment.symptoms:
            lines.append(f"Symptoms: {appointment.symptoms}")
        lines += ["", f"Today's queue: {clinic.frontend_url}/doctor-dashboard/queue"]
        return "\n".join(lines)

    def _mail_reminder(self, appointment, recipient, subject, message) -> bool:
        if not recipient.email:
            logger.warning("User %s has no email; reminder for appointment %s skipped",
                           recipient.pk, appointment.pk)
            return False
        try:
            send_mail(
                subject,  # subject
                message,  # message
                settings.DEFAULT_FROM_EMAIL,  # from email
                [recipient.email],  # to email
            )
        except Exception:
            logger.exception("Error sending reminder to %s for appointment %s", recipient.email, appointment.pk)
            return False

        logger.info("Reminder email sent to %s for appointment %s", recipient.email, appointment.pk)
        return True

    def send_status_change(self, appointment, recipient, new_status) -> None:
        if not recipient.email:
            return
        clinic = ClinicSettings.load()
        label = AppointmentStatus(new_status).label
        message = (
            f"Dear {display_name(recipient)},\n\n"
            f"The appointment on {appointment.date_string} at {appointment.start_time} "
            f"is now {label}.\n"
        )
        if new_status == AppointmentStatus.CANCELLED and appointment.cancel_reason:
            message += f"Reason: {appointment.cancel_reason}\n"
        if new_status == AppointmentStatus.PENDING_PATIENT_CONFIRMATION:
            message += "Please confirm the new time from your dashboard.\n"
        message += f"\n{clinic.frontend_url}\n"

        send_mail(
            f"Appointment {label} - {clinic.clinic_name}",
            message,
            settings.DEFAULT_FROM_EMAIL,
            [recipient.email],
        )


def get_dispatcher() -> NotificationDispatcher:
    return import_string(settings.NOTIFICATION_DISPATCHER)()


class RealtimePublisher:
    """
    Forwards bus events to the realtime gateway (socket server) over HTTP.
    Does nothing when REALTIME_GATEWAY_URL is empty.
    """

    def __init__(self, url=None, timeout=None):
        self.url = settings.REALTIME_GATEWAY_URL if url is None else url
        self.timeout = settings.REALTIME_GATEWAY_TIMEOUT if timeout is None else timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def publish(self, event, room, payload) -> bool:
        if not self.enabled:
            return False
        try:
            r = http_requests.post(
                self.url,
                json={"event": event, "room": room, "payload": payload},
                timeout=self.timeout,
            )
            r.raise_for_status()
        except http_requests.RequestException:
            logger.warning("Realtime publish of %s to %s failed", event, room, exc_info=True)
            return False
        return True
