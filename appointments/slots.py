"""
SlotStore: generates a doctor's bookable slots for a day and guards them.

Every write to TimeSlot.is_booked goes through reserve() / release(); the
compare-and-set in reserve() is the no-double-booking check.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction

from .constants import DEFAULT_REGULAR_HOURS, SlotKind
from .exceptions import ConflictError, NotFoundError, ValidationError
from .forms import AvailabilityForm
from .models import AvailabilityDay, Break, ClinicSettings, DoctorSchedule, TimeSlot
from .permissions import ensure_doctor_or_admin
from .utils.db import translate_db_errors
from .utils.time_utils import format_hhmm, iter_slots, parse_date, ranges_overlap, to_minutes

logger = logging.getLogger(__name__)

# Reasons a slot cannot be booked
DOCTOR_UNAVAILABLE = "DOCTOR_UNAVAILABLE"
OUTSIDE_HOURS = "OUTSIDE_HOURS"
ALREADY_BOOKED = "ALREADY_BOOKED"
DOCTOR_BREAK = "DOCTOR_BREAK"


@dataclass
class SlotCheck:
    available: bool
    reason: Optional[str] = None
    slot: Optional[TimeSlot] = None
    alternatives: List[dict] = field(default_factory=list)

    @property
    def slot_kind(self):
        return self.slot.kind if self.slot else None


def build_slots(regular_hours, duration, emergency_hours=None, breaks=()):
    """
    Slot dicts for a day: regular slots, then emergency slots that do not
    collide with a regular start, sorted by start. Slots overlapping a break
    are flagged is_break.
    """
    slots = {}
    for start, end in iter_slots(regular_hours[0], regular_hours[1], duration):
        slots[start] = {"start_time": start, "end_time": end, "kind": SlotKind.REGULAR}

    if emergency_hours:
        for start, end in iter_slots(emergency_hours[0], emergency_hours[1], duration):
            slots.setdefault(start, {"start_time": start, "end_time": end, "kind": SlotKind.EMERGENCY})

    result = []
    for start in sorted(slots):
        slot = slots[start]
        slot["is_break"] = any(
            ranges_overlap(slot["start_time"], slot["end_time"], b["start"], b["end"])
            for b in breaks
        )
        result.append(slot)
    return result


class SlotStore:
    """Owner of AvailabilityDay / TimeSlot state."""

    @translate_db_errors
    def get_or_generate(self, doctor_id, date) -> AvailabilityDay:
        day_date = parse_date(date)
        if day_date is None:
            raise ValidationError("Invalid date format. Please use YYYY-MM-DD format", errors={"date": ["invalid"]})

        day = AvailabilityDay.objects.filter(doctor_id=doctor_id, date=day_date).first()
        if day is not None:
            return day

        schedule = DoctorSchedule.objects.filter(doctor_id=doctor_id).first()
        if schedule is not None:
            regular = (schedule.regular_start, schedule.regular_end)
            emergency = schedule.emergency_hours
            duration = schedule.slot_duration
            breaks = list(schedule.breaks or [])
            is_available = schedule.works_on(day_date)
        else:
            regular = DEFAULT_REGULAR_HOURS
            emergency = None
            duration = ClinicSettings.load().default_slot_duration
            breaks = []
            is_available = True

        try:
            with transaction.atomic():
                day = self._create_day(doctor_id, day_date, regular, emergency, duration, breaks, is_available)
        except IntegrityError:
            # another worker generated the same (doctor, date) first
            return AvailabilityDay.objects.get(doctor_id=doctor_id, date=day_date)

        logger.info(
            "Generated %d slots for doctor %s on %s",
            day.time_slots.count(), doctor_id, day_date.isoformat(),
        )
        return day

    def _create_day(self, doctor_id, day_date, regular, emergency, duration, breaks, is_available):
        day = AvailabilityDay.objects.create(
            doctor_id=doctor_id,
            date=day_date,
            is_available=is_available,
            regular_start=regular[0],
            regular_end=regular[1],
            emergency_start=emergency[0] if emergency else "",
            emergency_end=emergency[1] if emergency else "",
            slot_duration=duration,
            timezone=settings.TIME_ZONE,
        )
        Break.objects.bulk_create([
            Break(
                day=day,
                start_time=b["start"],
                end_time=b["end"],
                kind=b.get("kind", "quick"),
                recurring=b.get("recurring", True),
            )
            for b in breaks
        ])
        TimeSlot.objects.bulk_create([
            TimeSlot(day=day, **slot) for slot in build_slots(regular, duration, emergency, breaks)
        ])
        return day

    def _get_slot(self, day, start_time):
        return TimeSlot.objects.filter(day=day, start_time=format_hhmm(start_time)).first()

    @translate_db_errors
    def check(self, doctor_id, date, start_time, end_time=None) -> SlotCheck:
        """Availability verdict for one slot, with the closest free alternatives when refused."""
        day = self.get_or_generate(doctor_id, date)
        if not day.is_available:
            return SlotCheck(False, DOCTOR_UNAVAILABLE)

        slot = self._get_slot(day, start_time)
        if slot is None or (end_time and slot.end_time != format_hhmm(end_time)):
            verdict = SlotCheck(False, OUTSIDE_HOURS)
        elif slot.is_booked:
            verdict = SlotCheck(False, ALREADY_BOOKED, slot)
        elif slot.is_break:
            verdict = SlotCheck(False, DOCTOR_BREAK, slot)
        else:
            return SlotCheck(True, None, slot)

        verdict.alternatives = self.find_alternatives(doctor_id, date, start_time)
        return verdict

    @translate_db_errors
    def reserve(self, doctor_id, date, start_time, appointment_id, patient_id) -> TimeSlot:
        """
        Compare-and-set: bind the slot only if it is currently free.
        Re-reserving a slot already bound to the same appointment is a no-op.
        """
        day = self.get_or_generate(doctor_id, date)
        start_time = format_hhmm(start_time)
        if not day.is_available:
            raise ConflictError(
                "Slot unavailable: DOCTOR_UNAVAILABLE",
                reason=DOCTOR_UNAVAILABLE,
                slot={"start_time": start_time},
            )

        updated = TimeSlot.objects.filter(
            day=day,
            start_time=start_time,
            is_booked=False,
            is_break=False,
        ).update(is_booked=True, appointment_id=appointment_id, patient_id=patient_id)

        slot = self._get_slot(day, start_time)
        if updated:
            logger.info(
                "Reserved slot %s %s %s for appointment %s",
                doctor_id, day.date.isoformat(), start_time, appointment_id,
            )
            return slot

        if slot is None:
            raise NotFoundError(
                f"No slot at {start_time} on {day.date.isoformat()}",
                doctor_id=doctor_id,
                date=day.date.isoformat(),
                slot=start_time,
            )
        if slot.is_booked and slot.appointment_id == appointment_id:
            return slot

        reason = DOCTOR_BREAK if slot.is_break else ALREADY_BOOKED
        logger.info("Slot %s on %s for doctor %s not reservable: %s", start_time, day.date, doctor_id, reason)
        raise ConflictError(
            f"Slot unavailable: {reason}",
            reason=reason,
            slot=slot.as_dict(),
            alternatives=self.find_alternatives(doctor_id, day.date, start_time),
        )

    @translate_db_errors
    def release(self, doctor_id, date, start_time, appointment_id=None) -> bool:
        """
        Idempotent; returns whether a slot row was cleared. With
        `appointment_id` the slot is only cleared while bound to that
        appointment, so releasing a stale booking never frees someone else's.
        """
        day = AvailabilityDay.objects.filter(doctor_id=doctor_id, date=parse_date(date)).first()
        if day is None:
            return False
        qs = TimeSlot.objects.filter(day=day, start_time=format_hhmm(start_time))
        if appointment_id is not None:
            qs = qs.filter(appointment_id=appointment_id)
        updated = qs.update(is_booked=False, appointment=None, patient=None)
        if updated:
            logger.info("Released slot %s on %s for doctor %s", start_time, day.date, doctor_id)
        return bool(updated)

    @translate_db_errors
    def available_slots(self, doctor_id, date) -> List[TimeSlot]:
        day = self.get_or_generate(doctor_id, date)
        if not day.is_available:
            return []
        return list(day.time_slots.filter(is_booked=False, is_break=False).order_by("start_time"))

    def find_alternatives(self, doctor_id, date, preferred_time, limit: int = 3) -> List[dict]:
        """Up to `limit` free slots closest to the preferred start time."""
        day = AvailabilityDay.objects.filter(doctor_id=doctor_id, date=parse_date(date)).first()
        if day is None or not day.is_available:
            return []
        preferred = to_minutes(preferred_time)
        free = day.time_slots.filter(is_booked=False, is_break=False)
        ranked = sorted(free, key=lambda s: abs(to_minutes(s.start_time) - preferred))
        return [
            {"start_time": s.start_time, "end_time": s.end_time, "kind": s.kind}
            for s in ranked[:limit]
        ]

    @translate_db_errors
    def configure_day(self, doctor_id, date, regular_hours, emergency_hours=None, breaks=(),
                      is_available=True, slot_duration=None, actor=None) -> AvailabilityDay:
        """
        Replace the working hours of one day and regenerate its slots.
        Existing bookings are carried over; a booked slot that would
        disappear makes the whole change fail.
        """
        ensure_doctor_or_admin(actor, doctor_id)

        form = AvailabilityForm(data={
            "regular_start": regular_hours[0],
            "regular_end": regular_hours[1],
            "emergency_start": emergency_hours[0] if emergency_hours else "",
            "emergency_end": emergency_hours[1] if emergency_hours else "",
            "slot_duration": slot_duration,
            "is_available": is_available,
            "breaks": list(breaks),
        })
        if not form.is_valid():
            raise ValidationError.from_form(form)
        data = form.cleaned_data

        with transaction.atomic():
            day = self.get_or_generate(doctor_id, date)
            day = AvailabilityDay.objects.select_for_update().get(pk=day.pk)

            duration = data.get("slot_duration") or day.slot_duration
            regular = (data["regular_start"], data["regular_end"])
            emergency = (
                (data["emergency_start"], data["emergency_end"]) if data["emergency_start"] else None
            )
            new_slots = build_slots(regular, duration, emergency, data["breaks"])
            bookable = {s["start_time"]: s for s in new_slots if not s["is_break"]}

            booked = list(day.time_slots.filter(is_booked=True))
            for slot in booked:
                target = bookable.get(slot.start_time)
                if target is None or target["end_time"] != slot.end_time:
                    raise ConflictError(
                        f"Slot {slot.start_time} is booked and cannot be removed",
                        reason=ALREADY_BOOKED,
                        slot=slot.as_dict(),
                    )
            if booked and not data["is_available"]:
                raise ConflictError(
                    "Cannot mark the day unavailable while it has bookings",
                    reason=ALREADY_BOOKED,
                    slot=booked[0].as_dict(),
                )

            bindings = {s.start_time: (s.appointment_id, s.patient_id) for s in booked}

            day.is_available = data["is_available"]
            day.regular_start, day.regular_end = regular
            day.emergency_start = data["emergency_start"]
            day.emergency_end = data["emergency_end"]
            day.slot_duration = duration
            day.save()

            day.breaks.all().delete()
            Break.objects.bulk_create([
                Break(day=day, start_time=b["start"], end_time=b["end"], kind=b["kind"], recurring=b["recurring"])
                for b in data["breaks"]
            ])

            day.time_slots.all().delete()
            rows = []
            for slot in new_slots:
                appointment_id, patient_id = bindings.get(slot["start_time"], (None, None))
                rows.append(TimeSlot(
                    day=day,
                    is_booked=appointment_id is not None,
                    appointment_id=appointment_id,
                    patient_id=patient_id,
                    **slot,
                ))
            TimeSlot.objects.bulk_create(rows)

        logger.info(
            "Availability updated for doctor %s on %s: %s-%s, %d slots, available=%s",
            doctor_id, day.date.isoformat(), regular[0], regular[1], len(rows), day.is_available,
        )
        return day
