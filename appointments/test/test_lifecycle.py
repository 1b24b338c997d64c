from django.core import mail
from django.db import IntegrityError, transaction
from django.test import TestCase

from appointments.constants import ActorRole, AppointmentKind, AppointmentStatus
from appointments.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from appointments.lifecycle import AppointmentLifecycle
from appointments.models import Appointment, StatusHistoryEntry, TimeSlot
from appointments.permissions import Actor
from appointments.slots import ALREADY_BOOKED, DOCTOR_BREAK, OUTSIDE_HOURS, SlotStore
from appointments.test.helpers import DAY, doctor_actor, make_appointment, make_user, patient_actor

SLOT_10 = {"start_time": "10:00", "end_time": "10:30"}


class LifecycleTestBase(TestCase):
    def setUp(self):
        self.doctor = make_user("doc", first_name="Gregory", last_name="House")
        self.patient = make_user("pat", first_name="Ana", last_name="Lopez")
        self.other_patient = make_user("pat2")
        self.lifecycle = AppointmentLifecycle()
        self.doc = doctor_actor(self.doctor)
        self.pat = patient_actor(self.patient)

    def book(self, patient=None, slot=SLOT_10, **extra):
        patient = patient or self.patient
        with self.captureOnCommitCallbacks(execute=True):
            return self.lifecycle.book(
                self.doctor.pk, patient.pk, DAY, slot, "in-person", "toothache",
                actor=patient_actor(patient), **extra
            )

    def transition(self, appointment, status, actor, notes=""):
        with self.captureOnCommitCallbacks(execute=True):
            return self.lifecycle.transition(appointment.pk, status, actor, notes=notes)

    def slot(self, start="10:00"):
        return TimeSlot.objects.get(day__doctor=self.doctor, day__date=DAY, start_time=start)


class EndToEndTests(LifecycleTestBase):
    def test_book_confirm_cancel(self):
        print("\n[TEST] book -> confirm -> cancel keeps slot and history in step")

        appt = self.book()
        print("  - booked:", appt)
        self.assertEqual(appt.status, AppointmentStatus.PENDING)
        self.assertFalse(self.slot().is_booked)

        self.transition(appt, AppointmentStatus.CONFIRMED, self.doc)
        slot = self.slot()
        self.assertTrue(slot.is_booked)
        self.assertEqual(slot.appointment_id, appt.pk)
        self.assertEqual(slot.patient_id, self.patient.pk)

        appt = self.transition(appt, AppointmentStatus.CANCELLED, self.pat, notes="Can't make it")
        slot = self.slot()
        print("  - slot after cancel:", slot)
        self.assertEqual(appt.status, AppointmentStatus.CANCELLED)
        self.assertEqual(appt.cancelled_by, ActorRole.PATIENT)
        self.assertEqual(appt.cancel_reason, "Can't make it")
        self.assertFalse(slot.is_booked)
        self.assertIsNone(slot.appointment_id)
        self.assertIsNone(slot.patient_id)

        history = [h.status for h in self.lifecycle.history(appt.pk)]
        self.assertEqual(history, ["pending", "confirmed", "cancelled"])

        # new request -> doctor, confirmation -> patient, patient cancel -> doctor
        self.assertEqual(len(mail.outbox), 3)
        self.assertEqual(mail.outbox[0].to, ["doc@test.com"])
        self.assertEqual(mail.outbox[1].to, ["pat@test.com"])
        self.assertIn("Cancelled", mail.outbox[2].subject)

    def test_visit_stamps_and_release_on_completion(self):
        print("\n[TEST] in-progress/completed stamp the visit and free the slot")

        appt = self.book()
        self.transition(appt, AppointmentStatus.CONFIRMED, self.doc)
        appt = self.transition(appt, AppointmentStatus.IN_PROGRESS, self.doc)
        self.assertIsNotNone(appt.visit_started_at)
        self.assertTrue(self.slot().is_booked)

        appt = self.transition(appt, AppointmentStatus.COMPLETED, self.doc)
        self.assertIsNotNone(appt.visit_ended_at)
        self.assertFalse(self.slot().is_booked)

    def test_status_change_emits_event_once_after_commit(self):
        print("\n[TEST] one event per committed transition")
        from appointments.signals import appointment_status_changed

        appt = self.book()
        seen = []

        def listener(sender, **kwargs):
            seen.append((kwargs["old_status"], kwargs["new_status"]))

        appointment_status_changed.connect(listener)
        try:
            with self.captureOnCommitCallbacks(execute=False) as callbacks:
                self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, self.doc)
            self.assertEqual(seen, [])
            for callback in callbacks:
                callback()
        finally:
            appointment_status_changed.disconnect(listener)

        self.assertEqual(seen, [("pending", "confirmed")])


class TransitionRuleTests(LifecycleTestBase):
    def test_completed_to_confirmed_is_rejected(self):
        print("\n[TEST] completed -> confirmed is an illegal transition")

        appt = make_appointment(self.doctor, self.patient, status=AppointmentStatus.COMPLETED)

        with self.assertRaises(ConflictError) as ctx:
            self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, self.doc)

        print("  - error:", ctx.exception.as_dict())
        self.assertEqual(ctx.exception.current_status, "completed")
        self.assertEqual(ctx.exception.requested_status, "confirmed")
        appt.refresh_from_db()
        self.assertEqual(appt.status, AppointmentStatus.COMPLETED)
        self.assertFalse(StatusHistoryEntry.objects.filter(appointment=appt).exists())

    def test_same_status_is_a_conflict(self):
        appt = self.book()
        self.transition(appt, AppointmentStatus.CONFIRMED, self.doc)
        with self.assertRaises(ConflictError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, self.doc)

    def test_unknown_status_is_invalid(self):
        appt = self.book()
        with self.assertRaises(ValidationError):
            self.lifecycle.transition(appt.pk, "archived", self.doc)

    def test_missing_appointment(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.transition(9999, AppointmentStatus.CONFIRMED, self.doc)

    def test_second_confirmation_of_same_slot_conflicts(self):
        print("\n[TEST] two pending requests, only the first confirmed one gets the slot")

        first = self.book()
        second = self.book(patient=self.other_patient)
        self.transition(first, AppointmentStatus.CONFIRMED, self.doc)

        with self.assertRaises(ConflictError) as ctx:
            self.lifecycle.transition(second.pk, AppointmentStatus.CONFIRMED, self.doc)

        self.assertEqual(ctx.exception.reason, ALREADY_BOOKED)
        second.refresh_from_db()
        self.assertEqual(second.status, AppointmentStatus.PENDING)
        self.assertEqual(self.slot().appointment_id, first.pk)

    def test_rejecting_stale_request_keeps_other_booking(self):
        print("\n[TEST] rejecting a pending request never frees someone else's slot")

        first = self.book()
        second = self.book(patient=self.other_patient)
        self.transition(first, AppointmentStatus.CONFIRMED, self.doc)
        self.transition(second, AppointmentStatus.REJECTED, self.doc)

        slot = self.slot()
        self.assertTrue(slot.is_booked)
        self.assertEqual(slot.appointment_id, first.pk)

    def test_holding_statuses_are_unique_per_slot(self):
        print("\n[TEST] database refuses two slot-holding appointments for one slot")

        make_appointment(self.doctor, self.patient, status=AppointmentStatus.CONFIRMED)
        with transaction.atomic():
            with self.assertRaises(IntegrityError):
                make_appointment(self.doctor, self.other_patient, status=AppointmentStatus.IN_PROGRESS)

        # terminal / pending rows do not count
        make_appointment(self.doctor, self.other_patient, status=AppointmentStatus.CANCELLED)
        make_appointment(self.doctor, self.other_patient, status=AppointmentStatus.PENDING)


class AuthorizationTests(LifecycleTestBase):
    def test_patient_cannot_confirm_own_request(self):
        appt = self.book()
        with self.assertRaises(AuthorizationError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, self.pat)

    def test_other_patient_cannot_cancel(self):
        appt = self.book()
        with self.assertRaises(AuthorizationError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.CANCELLED, patient_actor(self.other_patient))

    def test_patient_cannot_complete(self):
        appt = self.book()
        self.transition(appt, AppointmentStatus.CONFIRMED, self.doc)
        with self.assertRaises(AuthorizationError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.COMPLETED, self.pat)

    def test_other_doctor_cannot_touch(self):
        other_doc = make_user("doc2")
        appt = self.book()
        with self.assertRaises(AuthorizationError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, doctor_actor(other_doc))

    def test_admin_can_act_on_any(self):
        admin = make_user("admin")
        appt = self.book()
        appt = self.transition(appt, AppointmentStatus.CONFIRMED, Actor(admin.pk, ActorRole.ADMIN))
        self.assertEqual(appt.status, AppointmentStatus.CONFIRMED)

    def test_patient_cannot_book_for_someone_else(self):
        with self.assertRaises(AuthorizationError):
            self.lifecycle.book(
                self.doctor.pk, self.other_patient.pk, DAY, SLOT_10, "video", "",
                actor=self.pat,
            )


class BookingValidationTests(LifecycleTestBase):
    def test_booked_slot_offers_alternatives(self):
        print("\n[TEST] booking a held slot returns the nearest free ones")

        appt = self.book()
        self.transition(appt, AppointmentStatus.CONFIRMED, self.doc)

        with self.assertRaises(ConflictError) as ctx:
            self.book(patient=self.other_patient)

        alternatives = [a["start_time"] for a in ctx.exception.alternatives]
        print("  - alternatives:", alternatives)
        self.assertEqual(ctx.exception.reason, ALREADY_BOOKED)
        self.assertEqual(alternatives, ["09:30", "10:30", "09:00"])

    def test_outside_hours(self):
        with self.assertRaises(ConflictError) as ctx:
            self.book(slot={"start_time": "18:00", "end_time": "18:30"})
        self.assertEqual(ctx.exception.reason, OUTSIDE_HOURS)

    def test_break_slot(self):
        SlotStore().configure_day(
            self.doctor.pk, DAY, ("09:00", "17:00"),
            breaks=[{"start": "12:00", "end": "13:00", "kind": "lunch"}],
            actor=self.doc,
        )
        with self.assertRaises(ConflictError) as ctx:
            self.book(slot={"start_time": "12:00", "end_time": "12:30"})
        self.assertEqual(ctx.exception.reason, DOCTOR_BREAK)

    def test_end_before_start(self):
        with self.assertRaises(ValidationError) as ctx:
            self.book(slot={"start_time": "10:30", "end_time": "10:00"})
        print("  - errors:", ctx.exception.errors)
        self.assertFalse(Appointment.objects.exists())

    def test_bad_time_format(self):
        with self.assertRaises(ValidationError) as ctx:
            self.book(slot={"start_time": "25:00", "end_time": "25:30"})
        self.assertIn("start_time", ctx.exception.errors)

    def test_unknown_consultation_type(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.book(self.doctor.pk, self.patient.pk, DAY, SLOT_10, "telepathy", "")

    def test_emergency_needs_emergency_slot(self):
        with self.assertRaises(ValidationError):
            self.book(kind=AppointmentKind.EMERGENCY)

    def test_emergency_slot_booking(self):
        SlotStore().configure_day(
            self.doctor.pk, DAY, ("09:00", "17:00"),
            emergency_hours=("17:00", "19:00"),
            actor=self.doc,
        )
        appt = self.book(slot={"start_time": "18:00", "end_time": "18:30"}, kind=AppointmentKind.EMERGENCY)
        self.assertEqual(appt.kind, AppointmentKind.EMERGENCY)

    def test_unknown_doctor(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.book(9999, self.patient.pk, DAY, SLOT_10, "video", "")


class RescheduleTests(LifecycleTestBase):
    def setUp(self):
        super().setUp()
        self.appt = self.book()
        self.transition(self.appt, AppointmentStatus.CONFIRMED, self.doc)

    def reschedule(self, slot, requires_confirmation, actor, day=DAY):
        with self.captureOnCommitCallbacks(execute=True):
            return self.lifecycle.reschedule(self.appt.pk, day, slot, requires_confirmation, actor)

    def test_doctor_reschedule_needs_patient_confirmation(self):
        print("\n[TEST] doctor moves the visit, patient has to accept")

        appt = self.reschedule({"start_time": "11:00", "end_time": "11:30"}, True, self.doc)

        self.assertEqual(appt.status, AppointmentStatus.PENDING_PATIENT_CONFIRMATION)
        self.assertEqual(appt.reschedule_requested_by, ActorRole.DOCTOR)
        self.assertEqual(appt.start_time, "11:00")
        self.assertFalse(self.slot("10:00").is_booked)
        self.assertEqual(self.slot("11:00").appointment_id, appt.pk)

        with self.assertRaises(AuthorizationError):
            self.lifecycle.transition(appt.pk, AppointmentStatus.CONFIRMED, self.doc)

        appt = self.transition(appt, AppointmentStatus.CONFIRMED, self.pat)
        self.assertEqual(appt.status, AppointmentStatus.CONFIRMED)
        self.assertEqual(self.slot("11:00").appointment_id, appt.pk)

        notes = self.lifecycle.history(appt.pk)[-2].notes
        self.assertIn("Rescheduled from 2030-03-04 10:00", notes)

    def test_reschedule_into_taken_slot_rolls_back(self):
        print("\n[TEST] failed reschedule leaves the original booking intact")

        other = self.book(patient=self.other_patient, slot={"start_time": "11:00", "end_time": "11:30"})
        self.transition(other, AppointmentStatus.CONFIRMED, self.doc)

        with self.assertRaises(ConflictError):
            self.reschedule({"start_time": "11:00", "end_time": "11:30"}, False, self.doc)

        self.appt.refresh_from_db()
        self.assertEqual(self.appt.start_time, "10:00")
        self.assertEqual(self.slot("10:00").appointment_id, self.appt.pk)
        self.assertEqual(self.slot("11:00").appointment_id, other.pk)

    def test_patient_cannot_self_confirm_reschedule(self):
        with self.assertRaises(AuthorizationError):
            self.reschedule({"start_time": "11:00", "end_time": "11:30"}, False, self.pat)

    def test_completed_cannot_be_rescheduled(self):
        self.transition(self.appt, AppointmentStatus.COMPLETED, self.doc)
        with self.assertRaises(ConflictError) as ctx:
            self.reschedule({"start_time": "11:00", "end_time": "11:30"}, False, self.doc)
        self.assertEqual(ctx.exception.current_status, "completed")
