from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from appointments.constants import AppointmentStatus
from appointments.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from appointments.lifecycle import AppointmentLifecycle
from appointments.signals import queue_updated
from appointments.test.helpers import DAY, doctor_actor, make_appointment, make_user, patient_actor
from frontdesk.models import QueueDay, QueueEntry, QueueEntryStatus
from frontdesk.services import QueueManager


class QueueTestBase(TestCase):
    def setUp(self):
        self.doctor = make_user("doc")
        self.queue = QueueManager()

    def appointment(self, start, status=AppointmentStatus.CONFIRMED, name=None):
        end = f"{start[:2]}:{int(start[3:]) + 15:02d}"
        patient = make_user(name or f"pat{start.replace(':', '')}")
        return make_appointment(self.doctor, patient, start=start, end=end, status=status)

    def order(self):
        day = QueueDay.objects.get(doctor=self.doctor, date=DAY)
        return [(e.priority, e.scheduled_time) for e in day.entries.order_by("position")]


class QueueOrderingTests(QueueTestBase):
    def setUp(self):
        super().setUp()
        self.appts = {}
        for priority, start in [(0, "10:00"), (2, "10:30"), (1, "09:30")]:
            appt = self.appointment(start)
            self.appts[priority] = appt
            self.queue.upsert_entry(self.doctor.pk, DAY, {
                "appointment_id": appt.pk,
                "priority": priority,
                "scheduled_time": start,
            })

    def test_priority_then_time(self):
        print("\n[TEST] queue sorts by priority, then scheduled time")
        print("  - order:", self.order())
        self.assertEqual(self.order(), [(2, "10:30"), (1, "09:30"), (0, "10:00")])

    def test_in_progress_goes_first(self):
        print("\n[TEST] the patient in consultation is always first")

        self.queue.update_entry_status(self.appts[0].pk, QueueEntryStatus.IN_PROGRESS, date=DAY)

        self.assertEqual(self.order(), [(0, "10:00"), (2, "10:30"), (1, "09:30")])
        status = self.queue.get_status(self.doctor.pk, DAY)
        self.assertEqual(status["current_entry"]["appointment_id"], self.appts[0].pk)

    def test_wait_times(self):
        print("\n[TEST] waiting entries get 0, avg, 2*avg")

        day = QueueDay.objects.get(doctor=self.doctor, date=DAY)
        waits = [e.estimated_wait_time for e in day.entries.order_by("position")]
        print("  - waits:", waits)
        self.assertEqual(day.average_consultation_time, 15)
        self.assertEqual(waits, [0, 15, 30])

    def test_wait_times_skip_non_waiting(self):
        self.queue.update_entry_status(self.appts[2].pk, QueueEntryStatus.IN_PROGRESS, date=DAY)

        entries = {e.priority: e for e in QueueEntry.objects.all()}
        self.assertEqual(entries[1].estimated_wait_time, 0)
        self.assertEqual(entries[0].estimated_wait_time, 15)
        # last estimate from when it was still waiting
        self.assertEqual(entries[2].estimated_wait_time, 0)

    def test_single_in_progress(self):
        self.queue.update_entry_status(self.appts[0].pk, QueueEntryStatus.IN_PROGRESS)
        with self.assertRaises(ConflictError):
            self.queue.update_entry_status(self.appts[1].pk, QueueEntryStatus.IN_PROGRESS)
        self.assertEqual(QueueEntry.objects.filter(status=QueueEntryStatus.IN_PROGRESS).count(), 1)

    def test_average_consultation_time(self):
        print("\n[TEST] a 20 minute visit moves the average from 15 to 18")

        self.queue.update_entry_status(self.appts[2].pk, QueueEntryStatus.IN_PROGRESS)
        QueueEntry.objects.filter(appointment=self.appts[2]).update(
            start_time=timezone.now() - timedelta(minutes=20)
        )
        entry = self.queue.update_entry_status(self.appts[2].pk, QueueEntryStatus.COMPLETED)

        day = QueueDay.objects.get(doctor=self.doctor, date=DAY)
        print("  - average:", day.average_consultation_time)
        self.assertEqual(day.average_consultation_time, 18)
        self.assertIsNotNone(entry.end_time)

        waits = [e.estimated_wait_time for e in day.entries.filter(status="waiting").order_by("position")]
        self.assertEqual(waits, [0, 18])

    def test_set_priority_resorts(self):
        self.queue.set_priority(self.appts[0].pk, 5, date=DAY)
        self.assertEqual(self.order()[0], (5, "10:00"))

    def test_check_in(self):
        entry = self.queue.check_in(self.appts[1].pk)
        self.assertIsNotNone(entry.check_in_time)

    def test_extra_fields(self):
        entry = self.queue.update_entry_status(
            self.appts[1].pk, QueueEntryStatus.WAITING, extra={"notes": "needs wheelchair"},
        )
        self.assertEqual(entry.notes, "needs wheelchair")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.queue.update_entry_status(self.appts[1].pk, "teleported")

    def test_unknown_entry(self):
        with self.assertRaises(NotFoundError):
            self.queue.update_entry_status(9999, QueueEntryStatus.COMPLETED)

    def test_upsert_updates_existing(self):
        self.queue.upsert_entry(self.doctor.pk, DAY, {"appointment_id": self.appts[0].pk, "priority": 3})
        self.assertEqual(QueueEntry.objects.count(), 3)
        self.assertEqual(self.order()[0], (3, "10:00"))


class QueueDelayTests(QueueTestBase):
    def test_set_delay(self):
        day = self.queue.set_delay(self.doctor.pk, 20, date=DAY, actor=doctor_actor(self.doctor))
        self.assertEqual(day.current_delay, 20)
        self.assertEqual(self.queue.get_status(self.doctor.pk, DAY)["current_delay"], 20)

    def test_negative_delay(self):
        with self.assertRaises(ValidationError):
            self.queue.set_delay(self.doctor.pk, -5, date=DAY)

    def test_patient_cannot_set_delay(self):
        patient = make_user("pat")
        with self.assertRaises(AuthorizationError):
            self.queue.set_delay(self.doctor.pk, 10, date=DAY, actor=patient_actor(patient))

    def test_status_without_queue(self):
        with self.assertRaises(NotFoundError):
            self.queue.get_status(self.doctor.pk, DAY)

    def test_update_is_published_after_commit(self):
        seen = []

        def listener(sender, doctor_id, date, snapshot, **kwargs):
            seen.append((doctor_id, date, snapshot["current_delay"]))

        queue_updated.connect(listener)
        try:
            with self.captureOnCommitCallbacks(execute=True):
                self.queue.set_delay(self.doctor.pk, 10, date=DAY)
                self.assertEqual(seen, [])
        finally:
            queue_updated.disconnect(listener)

        self.assertEqual(seen, [(self.doctor.pk, "2030-03-04", 10)])


class QueueSyncTests(QueueTestBase):
    def test_sync_adds_confirmed_and_in_progress(self):
        print("\n[TEST] sync pulls the day's confirmed visits into the queue")

        confirmed = self.appointment("09:00")
        started = self.appointment("09:30", status=AppointmentStatus.IN_PROGRESS)
        self.appointment("10:00", status=AppointmentStatus.PENDING)
        self.appointment("10:30", status=AppointmentStatus.CANCELLED)

        day = self.queue.sync_with_appointments(self.doctor.pk, DAY)
        entries = list(day.entries.order_by("position"))

        print("  - entries:", entries)
        self.assertEqual([e.appointment_id for e in entries], [started.pk, confirmed.pk])
        self.assertEqual(entries[0].status, QueueEntryStatus.IN_PROGRESS)
        self.assertTrue(all(e.priority == 0 for e in entries))

        # running it again adds nothing
        self.queue.sync_with_appointments(self.doctor.pk, DAY)
        self.assertEqual(QueueEntry.objects.count(), 2)

    def test_sync_reconciles_status(self):
        appt = self.appointment("09:00")
        self.queue.sync_with_appointments(self.doctor.pk, DAY)

        appt.status = AppointmentStatus.NO_SHOW
        appt.save()
        self.queue.sync_with_appointments(self.doctor.pk, DAY)

        self.assertEqual(QueueEntry.objects.get(appointment=appt).status, QueueEntryStatus.NO_SHOW)

    def test_moved_appointment_leaves_old_queue(self):
        appt = self.appointment("09:00")
        self.queue.sync_with_appointments(self.doctor.pk, DAY)

        appt.date = DAY + timedelta(days=1)
        appt.save()
        self.queue.reconcile_appointment(appt.pk)

        self.assertEqual(QueueEntry.objects.get(appointment=appt).status, QueueEntryStatus.CANCELLED)

    def test_lifecycle_change_updates_existing_queue(self):
        print("\n[TEST] starting a visit moves its queue entry to in-progress")

        appt = self.appointment("09:00")
        self.queue.sync_with_appointments(self.doctor.pk, DAY)

        with self.captureOnCommitCallbacks(execute=True):
            AppointmentLifecycle().transition(appt.pk, AppointmentStatus.IN_PROGRESS, doctor_actor(self.doctor))

        entry = QueueEntry.objects.get(appointment=appt)
        self.assertEqual(entry.status, QueueEntryStatus.IN_PROGRESS)
        self.assertIsNotNone(entry.start_time)

    def test_sync_keeps_status_backed_by_appointment(self):
        print("\n[TEST] a status change mirrored on the appointment survives repeated syncs")

        appt = self.appointment("09:00")
        self.queue.sync_with_appointments(self.doctor.pk, DAY)
        AppointmentLifecycle().transition(appt.pk, AppointmentStatus.IN_PROGRESS, doctor_actor(self.doctor))
        started = self.queue.update_entry_status(appt.pk, QueueEntryStatus.IN_PROGRESS, date=DAY).start_time

        for _ in range(2):
            self.queue.sync_with_appointments(self.doctor.pk, DAY)

        entry = QueueEntry.objects.get(appointment=appt)
        self.assertEqual(entry.status, QueueEntryStatus.IN_PROGRESS)
        self.assertEqual(entry.start_time, started)
        self.assertEqual(self.queue.get_status(self.doctor.pk, DAY)["current_entry"]["appointment_id"], appt.pk)

    def test_queue_only_edit_converges_to_appointment(self):
        appt = self.appointment("09:00")
        self.queue.sync_with_appointments(self.doctor.pk, DAY)
        self.queue.update_entry_status(appt.pk, QueueEntryStatus.NO_SHOW, date=DAY)

        self.queue.sync_with_appointments(self.doctor.pk, DAY)

        # the appointment is still confirmed, so the entry goes back to waiting
        self.assertEqual(QueueEntry.objects.get(appointment=appt).status, QueueEntryStatus.WAITING)

    def test_no_queue_created_for_other_days(self):
        appt = self.appointment("09:00")
        self.assertIsNone(self.queue.reconcile_appointment(appt.pk))
        self.assertFalse(QueueDay.objects.exists())
