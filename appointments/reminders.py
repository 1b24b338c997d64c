"""
Reminder scheduler for confirmed appointments.

An APScheduler interval job scans today's confirmed appointments and sends
one reminder to each appointment whose start falls inside the reminder
window (50-70 minutes ahead by default).
"""

import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from .constants import AppointmentStatus
from .models import Appointment, ClinicSettings
from .notifications import get_dispatcher
from .utils.time_utils import combine, minutes_between

logger = logging.getLogger(__name__)

JOB_ID = "appointment_reminders"


class ReminderScheduler:
    def __init__(self, dispatcher=None):
        self.dispatcher = dispatcher or get_dispatcher()
        self._lock = threading.Lock()
        self._scheduler = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """Schedule the scan every `reminder_interval` minutes, running it once right away."""
        if self.running:
            logger.warning("ReminderScheduler already running")
            return

        interval = ClinicSettings.load().reminder_interval
        scheduler = BackgroundScheduler(timezone=settings.TIME_ZONE)
        scheduler.add_job(
            self._tick,
            IntervalTrigger(minutes=interval),
            id=JOB_ID,
            name="Appointment reminders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=timezone.now(),
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("ReminderScheduler started (every %d minutes)", interval)

    def stop(self, wait=True):
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("ReminderScheduler stopped")

    def _tick(self):
        # runs on an APScheduler worker thread, outside any request cycle
        close_old_connections()
        try:
            self.run_once()
        except Exception:
            logger.exception("Reminder check failed")
        finally:
            close_old_connections()

    def run_once(self, now=None):
        """
        One scan. Returns the number of reminders sent, or None when another
        scan was still running and this one was skipped.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Reminder check already in progress, skipping this tick")
            return None
        try:
            return self._check(now)
        finally:
            self._lock.release()

    def _check(self, now):
        now = now or timezone.now()
        if timezone.is_naive(now):
            now = timezone.make_aware(now)
        now = timezone.localtime(now)

        clinic = ClinicSettings.load()
        window = (clinic.reminder_window_start, clinic.reminder_window_end)

        candidates = (
            Appointment.objects
            .filter(status=AppointmentStatus.CONFIRMED, date=now.date(), reminder_sent=False)
            .select_related("doctor", "patient")
            .order_by("start_time")
        )
        logger.info("Checking %d confirmed appointments for reminders", len(candidates))

        sent = 0
        for appointment in candidates:
            try:
                if self._remind(appointment, now, window):
                    sent += 1
            except Exception:
                logger.exception("Error processing reminder for appointment %s", appointment.pk)

        logger.info("Finished reminder check. Sent %d reminders.", sent)
        return sent

    def _remind(self, appointment, now, window) -> bool:
        start = combine(appointment.date, appointment.start_time, tzinfo=now.tzinfo)
        delta = minutes_between(now, start)

        if delta < window[0]:
            # visits that already started are not reported
            if delta >= 0:
                logger.info(
                    "Reminder window missed for appointment %s (%d minutes away)",
                    appointment.pk, delta,
                )
            return False
        if delta > window[1]:
            return False

        if not self.dispatcher.send_reminder(appointment, appointment.patient, appointment.doctor):
            logger.warning("Reminder for appointment %s not delivered; will retry next tick", appointment.pk)
            return False

        # only the first tick to get here flips the flag
        marked = Appointment.objects.filter(
            pk=appointment.pk, reminder_sent=False,
        ).update(reminder_sent=True)
        if marked:
            logger.info("Reminder sent for appointment %s (%d minutes away)", appointment.pk, delta)
        return bool(marked)
