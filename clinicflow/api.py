"""
Entry points for the outer HTTP / RPC layer.

Callers resolve the authenticated user into an Actor and pass it in; every
function raises the errors in appointments.exceptions and never returns
error codes.
"""

from functools import lru_cache

from django.db import transaction

from appointments.lifecycle import AppointmentLifecycle
from appointments.reminders import ReminderScheduler
from appointments.slots import SlotStore
from frontdesk.services import APPOINTMENT_STATUS_FOR, QueueManager

slot_store = SlotStore()
lifecycle = AppointmentLifecycle(slot_store)
queue_manager = QueueManager()


@lru_cache(maxsize=None)
def reminder_scheduler() -> ReminderScheduler:
    return ReminderScheduler()


def book_appointment(data, actor=None):
    return lifecycle.book(
        doctor_id=data.get("doctor_id"),
        patient_id=data.get("patient_id"),
        date=data.get("date"),
        slot=data.get("slot") or {"start_time": data.get("start_time"), "end_time": data.get("end_time")},
        mode=data.get("consultation_type") or data.get("mode"),
        symptoms=data.get("symptoms", ""),
        kind=data.get("kind") or "regular",
        patient_name=data.get("patient_name", ""),
        actor=actor,
    )


def transition_appointment(appointment_id, status, actor, notes=""):
    return lifecycle.transition(appointment_id, status, actor, notes=notes)


def reschedule_appointment(appointment_id, date, slot, requires_confirmation, actor, notes=""):
    return lifecycle.reschedule(appointment_id, date, slot, requires_confirmation, actor, notes=notes)


def get_appointment_history(appointment_id):
    return lifecycle.history(appointment_id)


def get_available_slots(doctor_id, date):
    return [slot.as_dict() for slot in slot_store.available_slots(doctor_id, date)]


def set_availability(doctor_id, date, regular_hours, actor, emergency_hours=None, breaks=(),
                     is_available=True, slot_duration=None):
    return slot_store.configure_day(
        doctor_id, date, regular_hours,
        emergency_hours=emergency_hours,
        breaks=breaks,
        is_available=is_available,
        slot_duration=slot_duration,
        actor=actor,
    )


def get_queue_status(doctor_id, date=None):
    """Sync with the day's appointments first, then return the snapshot."""
    queue_manager.sync_with_appointments(doctor_id, date)
    return queue_manager.get_status(doctor_id, date)


def sync_queue(doctor_id, date=None):
    return queue_manager.snapshot(queue_manager.sync_with_appointments(doctor_id, date))


def set_queue_delay(doctor_id, minutes, actor, date=None):
    return queue_manager.snapshot(queue_manager.set_delay(doctor_id, minutes, date=date, actor=actor))


def update_queue_entry(appointment_id, status, actor, extra=None, date=None):
    """
    Queue status changes that mean something for the visit go through the
    appointment first, so the next sync keeps them. The entry update in the
    same transaction stamps start/end times and the running average.
    """
    target = APPOINTMENT_STATUS_FOR.get(status)
    with transaction.atomic():
        if target is not None and lifecycle.get(appointment_id).status != target:
            lifecycle.transition(appointment_id, target, actor)
        entry = queue_manager.update_entry_status(appointment_id, status, extra=extra, date=date)
    return entry.as_dict()


def check_in(appointment_id, date=None):
    return queue_manager.check_in(appointment_id, date=date).as_dict()


def check_reminders(now=None):
    return reminder_scheduler().run_once(now=now)
