import logging

from django.dispatch import receiver

from appointments.signals import appointment_status_changed

from .services import QueueManager

logger = logging.getLogger(__name__)


@receiver(appointment_status_changed, dispatch_uid="frontdesk.reconcile_queue")
def reconcile_queue(sender, appointment_id, **kwargs):
    try:
        QueueManager().reconcile_appointment(appointment_id)
    except Exception:
        # the appointment change is committed; the next sync repairs the queue
        logger.exception("Queue reconcile failed for appointment %s", appointment_id)
