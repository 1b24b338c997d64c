"""
Event bus for the scheduling core.

The core publishes once per committed state change; queue sync,
notifications and the realtime transport subscribe as receivers.
"""

from django.db import transaction
from django.dispatch import Signal

# kwargs: appointment_id, old_status, new_status, actor
appointment_status_changed = Signal()

# kwargs: doctor_id, date, snapshot
queue_updated = Signal()


def publish_status_change(appointment_id, old_status, new_status, actor):
    """Send appointment_status_changed after the surrounding transaction commits."""

    def _send():
        appointment_status_changed.send_robust(
            sender="appointments.lifecycle",
            appointment_id=appointment_id,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
        )

    transaction.on_commit(_send)


def publish_queue_update(doctor_id, date, snapshot):
    def _send():
        queue_updated.send_robust(
            sender="frontdesk.services",
            doctor_id=doctor_id,
            date=date,
            snapshot=snapshot,
        )

    transaction.on_commit(_send)
