from datetime import date, datetime, timedelta
from unittest import mock

from django.test import TestCase, override_settings
from django.utils import timezone

from appointments.constants import AppointmentStatus
from appointments.exceptions import ConflictError
from appointments.notifications import RealtimePublisher
from appointments.test.helpers import DAY, doctor_actor, make_appointment, make_user, patient_actor
from appointments.utils import time_utils
from clinicflow import api
from frontdesk.models import QueueEntry


class ApiFlowTests(TestCase):
    def setUp(self):
        self.doctor = make_user("doc")
        self.patient = make_user("pat")

    def test_book_confirm_and_queue(self):
        print("\n[TEST] api: book, confirm, then see the visit in the queue")

        with self.captureOnCommitCallbacks(execute=True):
            appt = api.book_appointment({
                "doctor_id": self.doctor.pk,
                "patient_id": self.patient.pk,
                "date": "2030-03-04",
                "start_time": "09:30",
                "end_time": "10:00",
                "consultation_type": "video",
                "symptoms": "follow-up on x-ray",
            }, actor=patient_actor(self.patient))
            api.transition_appointment(appt.pk, AppointmentStatus.CONFIRMED, doctor_actor(self.doctor))

        free = [s["start_time"] for s in api.get_available_slots(self.doctor.pk, DAY)]
        self.assertNotIn("09:30", free)
        self.assertEqual(len(free), 15)

        status = api.get_queue_status(self.doctor.pk, DAY)
        print("  - queue:", status["entries"])
        self.assertEqual([e["appointment_id"] for e in status["entries"]], [appt.pk])
        self.assertEqual(status["entries"][0]["consultation_type"], "video")

        snapshot = api.set_queue_delay(self.doctor.pk, 10, doctor_actor(self.doctor), date=DAY)
        self.assertEqual(snapshot["current_delay"], 10)

        history = [h.status for h in api.get_appointment_history(appt.pk)]
        self.assertEqual(history, ["pending", "confirmed"])

    def test_conflict_carries_alternatives(self):
        api.set_availability(
            self.doctor.pk, DAY, ("09:00", "10:00"), doctor_actor(self.doctor),
            breaks=[{"start": "09:30", "end": "10:00"}],
        )
        with self.assertRaises(ConflictError) as ctx:
            api.book_appointment({
                "doctor_id": self.doctor.pk,
                "patient_id": self.patient.pk,
                "date": "2030-03-04",
                "start_time": "09:30",
                "end_time": "10:00",
                "consultation_type": "in-person",
            })
        self.assertEqual(ctx.exception.as_dict()["reason"], "DOCTOR_BREAK")
        self.assertEqual([a["start_time"] for a in ctx.exception.alternatives], ["09:00"])


class QueueStatusThroughApiTests(TestCase):
    def setUp(self):
        self.doctor = make_user("doc")
        self.actor = doctor_actor(self.doctor)
        self.appt = make_appointment(self.doctor, make_user("pat"), start="09:00", end="09:30")
        api.sync_queue(self.doctor.pk, DAY)

    def update(self, status):
        with self.captureOnCommitCallbacks(execute=True):
            return api.update_queue_entry(self.appt.pk, status, self.actor, date=DAY)

    def test_in_progress_survives_next_status_read(self):
        print("\n[TEST] a visit started from the queue stays started after a sync")

        self.update("in-progress")
        status = api.get_queue_status(self.doctor.pk, DAY)

        print("  - current:", status["current_entry"])
        self.assertIsNotNone(status["current_entry"])
        self.assertEqual(status["current_entry"]["appointment_id"], self.appt.pk)
        self.appt.refresh_from_db()
        self.assertEqual(self.appt.status, AppointmentStatus.IN_PROGRESS)
        self.assertIsNotNone(self.appt.visit_started_at)

    def test_completed_stays_completed(self):
        self.update("in-progress")
        QueueEntry.objects.filter(appointment=self.appt).update(
            start_time=timezone.now() - timedelta(minutes=25)
        )
        self.update("completed")

        status = api.get_queue_status(self.doctor.pk, DAY)
        entry = status["entries"][0]
        self.assertEqual(entry["status"], "completed")
        self.assertIsNone(status["current_entry"])
        # (15 + 25) / 2
        self.assertEqual(status["average_consultation_time"], 20)
        self.appt.refresh_from_db()
        self.assertEqual(self.appt.status, AppointmentStatus.COMPLETED)

    def test_second_in_progress_rolls_back_appointment(self):
        other = make_appointment(self.doctor, make_user("pat2"), start="09:30", end="10:00")
        api.sync_queue(self.doctor.pk, DAY)
        self.update("in-progress")

        with self.assertRaises(ConflictError):
            api.update_queue_entry(other.pk, "in-progress", self.actor, date=DAY)

        other.refresh_from_db()
        self.assertEqual(other.status, AppointmentStatus.CONFIRMED)

    def test_waiting_leaves_appointment_alone(self):
        entry = self.update("waiting")
        self.assertEqual(entry["status"], "waiting")
        self.appt.refresh_from_db()
        self.assertEqual(self.appt.status, AppointmentStatus.CONFIRMED)


class RealtimePublisherTests(TestCase):
    @override_settings(REALTIME_GATEWAY_URL="")
    def test_disabled_without_url(self):
        with mock.patch("appointments.notifications.http_requests.post") as post:
            self.assertFalse(RealtimePublisher().publish("queueUpdated", "doctor-1", {}))
        post.assert_not_called()

    @override_settings(REALTIME_GATEWAY_URL="http://gateway.test/events")
    def test_posts_event(self):
        with mock.patch("appointments.notifications.http_requests.post") as post:
            self.assertTrue(RealtimePublisher().publish("queueUpdated", "doctor-1", {"current_delay": 5}))
        post.assert_called_once_with(
            "http://gateway.test/events",
            json={"event": "queueUpdated", "room": "doctor-1", "payload": {"current_delay": 5}},
            timeout=5,
        )


class TimeUtilsTests(TestCase):
    def test_parse_and_format(self):
        self.assertEqual(time_utils.format_hhmm("9:30"), "09:30")
        self.assertEqual(time_utils.format_hhmm("2:00 PM"), "14:00")
        self.assertEqual(time_utils.format_display("14:00"), "2:00 PM")
        with self.assertRaises(ValueError):
            time_utils.parse_hhmm("24:00")

    def test_parse_date(self):
        self.assertEqual(time_utils.parse_date("2030-03-04"), date(2030, 3, 4))
        self.assertEqual(time_utils.parse_date(datetime(2030, 3, 4, 23, 59)), date(2030, 3, 4))
        self.assertIsNone(time_utils.parse_date("03/04/2030"))

    def test_minutes_between_floors(self):
        start = datetime(2030, 3, 4, 9, 0, 30)
        end = datetime(2030, 3, 4, 10, 0)
        self.assertEqual(time_utils.minutes_between(start, end), 59)
        self.assertEqual(time_utils.minutes_between(end, start), -60)

    def test_iter_slots_drops_short_tail(self):
        self.assertEqual(
            list(time_utils.iter_slots("09:00", "10:10", 30)),
            [("09:00", "09:30"), ("09:30", "10:00")],
        )
