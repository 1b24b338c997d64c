from datetime import datetime, timedelta
from io import StringIO
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from appointments.constants import AppointmentStatus
from appointments.models import Appointment, ClinicSettings
from appointments.notifications import EmailNotificationDispatcher, NotificationDispatcher
from appointments.reminders import JOB_ID, ReminderScheduler
from appointments.test.helpers import DAY, make_appointment, make_user


class FakeDispatcher(NotificationDispatcher):
    def __init__(self, results=None, fail_for=()):
        self.calls = []
        self.results = list(results or [])
        self.fail_for = set(fail_for)

    def send_reminder(self, appointment, patient, doctor):
        self.calls.append(appointment.pk)
        if appointment.pk in self.fail_for:
            raise RuntimeError("smtp down")
        return self.results.pop(0) if self.results else True

    def send_status_change(self, appointment, recipient, new_status):
        pass


def at(hour, minute=0):
    return timezone.make_aware(datetime(DAY.year, DAY.month, DAY.day, hour, minute))


class ReminderWindowTests(TestCase):
    def setUp(self):
        self.doctor = make_user("doc", first_name="Gregory", last_name="House")
        self.patient = make_user("pat", first_name="Ana", last_name="Lopez")
        self.appt = make_appointment(self.doctor, self.patient, start="10:00", end="10:30")
        self.dispatcher = FakeDispatcher()
        self.scheduler = ReminderScheduler(dispatcher=self.dispatcher)

    def test_reminded_exactly_once(self):
        print("\n[TEST] two ticks inside the window send one reminder")

        first = self.scheduler.run_once(now=at(9, 0))    # 60 minutes away
        second = self.scheduler.run_once(now=at(9, 5))   # 55 minutes away

        print("  - sent:", first, second, "calls:", self.dispatcher.calls)
        self.assertEqual(first, 1)
        self.assertEqual(second, 0)
        self.assertEqual(self.dispatcher.calls, [self.appt.pk])
        self.appt.refresh_from_db()
        self.assertTrue(self.appt.reminder_sent)

    def test_window_bounds_are_inclusive(self):
        self.assertEqual(self.scheduler.run_once(now=at(8, 49)), 0)  # 71 minutes
        self.assertEqual(self.scheduler.run_once(now=at(8, 50)), 1)  # 70 minutes

    def test_lower_bound_inclusive(self):
        self.assertEqual(self.scheduler.run_once(now=at(9, 10)), 1)  # 50 minutes

    def test_floored_minutes(self):
        # 70 min 30 s away floors to 70, inside the window
        now = at(8, 49) + timedelta(seconds=30)
        self.assertEqual(self.scheduler.run_once(now=now), 1)

    def test_missed_window_is_logged_not_sent(self):
        with self.assertLogs("appointments.reminders", level="INFO") as logs:
            sent = self.scheduler.run_once(now=at(9, 30))  # 30 minutes away
        self.assertEqual(sent, 0)
        self.assertEqual(self.dispatcher.calls, [])
        self.assertTrue(any("missed" in line for line in logs.output), logs.output)
        self.appt.refresh_from_db()
        self.assertFalse(self.appt.reminder_sent)

    def test_started_appointment_not_logged_as_missed(self):
        with self.assertLogs("appointments.reminders", level="INFO") as logs:
            sent = self.scheduler.run_once(now=at(11, 0))  # started an hour ago
        self.assertEqual(sent, 0)
        self.assertFalse(any("missed" in line for line in logs.output), logs.output)

    def test_failed_dispatch_retried_next_tick(self):
        print("\n[TEST] a failed send leaves the flag clear for the next tick")

        self.dispatcher.results = [False, True]
        self.assertEqual(self.scheduler.run_once(now=at(9, 0)), 0)
        self.appt.refresh_from_db()
        self.assertFalse(self.appt.reminder_sent)

        self.assertEqual(self.scheduler.run_once(now=at(9, 5)), 1)
        self.appt.refresh_from_db()
        self.assertTrue(self.appt.reminder_sent)

    def test_one_failure_does_not_stop_batch(self):
        other = make_appointment(self.doctor, make_user("pat2"), start="10:05", end="10:35")
        self.dispatcher.fail_for = {self.appt.pk}

        sent = self.scheduler.run_once(now=at(9, 0))

        self.assertEqual(sent, 1)
        self.assertEqual(sorted(self.dispatcher.calls), sorted([self.appt.pk, other.pk]))
        self.assertTrue(Appointment.objects.get(pk=other.pk).reminder_sent)
        self.assertFalse(Appointment.objects.get(pk=self.appt.pk).reminder_sent)

    def test_only_confirmed_today(self):
        self.appt.status = AppointmentStatus.PENDING
        self.appt.save()
        make_appointment(self.doctor, make_user("pat2"), day=DAY + timedelta(days=1))
        self.assertEqual(self.scheduler.run_once(now=at(9, 0)), 0)
        self.assertEqual(self.dispatcher.calls, [])

    def test_window_comes_from_clinic_settings(self):
        clinic = ClinicSettings.load()
        clinic.reminder_window_start = 20
        clinic.reminder_window_end = 30
        clinic.save()

        self.assertEqual(self.scheduler.run_once(now=at(9, 0)), 0)
        self.assertEqual(self.scheduler.run_once(now=at(9, 35)), 1)  # 25 minutes

    def test_overlapping_tick_is_skipped(self):
        self.scheduler._lock.acquire()
        try:
            self.assertIsNone(self.scheduler.run_once(now=at(9, 0)))
        finally:
            self.scheduler._lock.release()
        self.assertEqual(self.dispatcher.calls, [])


@override_settings(REALTIME_GATEWAY_URL="")
class EmailReminderTests(TestCase):
    def setUp(self):
        self.doctor = make_user("doc", first_name="Gregory", last_name="House")
        self.patient = make_user("pat", first_name="Ana", last_name="Lopez")

    def test_email_dispatcher_sends_reminder(self):
        print("\n[TEST] default dispatcher emails the patient and the doctor")

        make_appointment(self.doctor, self.patient, start="10:00", end="10:30",
                         consultation_type="video", symptoms="sore tooth")

        sent = ReminderScheduler().run_once(now=at(9, 0))

        self.assertEqual(sent, 1)
        recipients = [m.to for m in mail.outbox]
        print("  - recipients:", recipients)
        self.assertEqual(sorted(recipients), [["doc@test.com"], ["pat@test.com"]])

        to_patient = next(m for m in mail.outbox if m.to == ["pat@test.com"])
        self.assertIn("Upcoming Appointment Reminder", to_patient.subject)
        self.assertIn("Dr. Gregory House", to_patient.body)
        self.assertIn("stable internet connection", to_patient.body)

        to_doctor = next(m for m in mail.outbox if m.to == ["doc@test.com"])
        self.assertIn("Ana Lopez", to_doctor.subject)
        self.assertIn("Dear Dr. Gregory House", to_doctor.body)
        self.assertIn("sore tooth", to_doctor.body)

    def test_doctor_reminder_counts_when_patient_has_no_email(self):
        patient = make_user("noemail", email="")
        appt = make_appointment(self.doctor, patient)

        self.assertEqual(ReminderScheduler().run_once(now=at(9, 0)), 1)
        self.assertEqual([m.to for m in mail.outbox], [["doc@test.com"]])
        appt.refresh_from_db()
        self.assertTrue(appt.reminder_sent)

    def test_nobody_reachable_is_not_flagged(self):
        doctor = make_user("doc2", email="")
        patient = make_user("pat2", email="")
        appt = make_appointment(doctor, patient)

        self.assertEqual(ReminderScheduler().run_once(now=at(9, 0)), 0)
        appt.refresh_from_db()
        self.assertFalse(appt.reminder_sent)

    @override_settings(REALTIME_GATEWAY_URL="http://gateway.test/events")
    def test_doctor_gets_realtime_reminder(self):
        appt = make_appointment(self.doctor, self.patient)

        with mock.patch("appointments.notifications.http_requests.post") as post:
            self.assertTrue(EmailNotificationDispatcher().send_reminder(appt, self.patient, self.doctor))

        post.assert_called_once()
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["event"], "appointmentReminder")
        self.assertEqual(body["room"], f"doctor-{self.doctor.pk}")
        self.assertEqual(body["payload"]["appointment_id"], appt.pk)


class IdleScheduler(ReminderScheduler):
    """Keeps the background job away from the test database."""

    ticks = 0

    def _tick(self):
        self.ticks += 1


class SchedulerLifecycleTests(TestCase):
    def test_start_and_stop(self):
        scheduler = IdleScheduler(dispatcher=FakeDispatcher())

        scheduler.start()
        try:
            self.assertTrue(scheduler.running)
            job = scheduler._scheduler.get_job(JOB_ID)
            self.assertEqual(job.trigger.interval, timedelta(minutes=5))
            self.assertEqual(job.max_instances, 1)
        finally:
            scheduler.stop()

        self.assertFalse(scheduler.running)

    def test_run_once_command(self):
        out = StringIO()
        call_command("run_reminder_scheduler", "--once", stdout=out)
        self.assertIn("Sent 0 reminders.", out.getvalue())
