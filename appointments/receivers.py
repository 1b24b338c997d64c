import logging

from django.dispatch import receiver

from .constants import AppointmentStatus
from .models import Appointment, ClinicSettings
from .notifications import RealtimePublisher, get_dispatcher
from .signals import appointment_status_changed, queue_updated

logger = logging.getLogger(__name__)


def _recipient(appointment, new_status, actor):
    """New requests go to the doctor; any other change goes to whoever did not make it."""
    if new_status == AppointmentStatus.PENDING:
        return appointment.doctor
    if actor is not None and actor.is_patient:
        return appointment.doctor
    return appointment.patient


@receiver(appointment_status_changed, dispatch_uid="appointments.notify_status_change")
def notify_status_change(sender, appointment_id, old_status, new_status, actor, **kwargs):
    if not ClinicSettings.load().status_emails_enabled:
        return
    try:
        appointment = Appointment.objects.select_related("doctor", "patient").get(pk=appointment_id)
        get_dispatcher().send_status_change(
            appointment, _recipient(appointment, new_status, actor), new_status,
        )
    except Exception:
        # the status change is already committed; a lost email only gets logged
        logger.exception("Status notification failed for appointment %s", appointment_id)


@receiver(appointment_status_changed, dispatch_uid="appointments.realtime_status_change")
def publish_status_change_realtime(sender, appointment_id, old_status, new_status, actor, **kwargs):
    publisher = RealtimePublisher()
    if not publisher.enabled:
        return
    appointment = Appointment.objects.filter(pk=appointment_id).only("doctor_id", "patient_id").first()
    if appointment is None:
        return
    payload = {
        "appointment_id": appointment_id,
        "old_status": old_status,
        "new_status": new_status,
        "actor_role": actor.role if actor else None,
    }
    publisher.publish("appointmentStatusChanged", f"patient-{appointment.patient_id}", payload)
    publisher.publish("appointmentStatusChanged", f"doctor-{appointment.doctor_id}", payload)


@receiver(queue_updated, dispatch_uid="appointments.realtime_queue_update")
def publish_queue_update_realtime(sender, doctor_id, date, snapshot, **kwargs):
    publisher = RealtimePublisher()
    if publisher.enabled:
        publisher.publish("queueUpdated", f"doctor-{doctor_id}", snapshot)
