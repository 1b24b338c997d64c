from django import forms

from .constants import AppointmentKind, BreakKind, ConsultationType
from .utils.time_utils import format_hhmm, ranges_overlap, to_minutes

TIME_INPUT_FORMATS = ["%H:%M", "%I:%M %p", "%I:%M%p"]


class BookingForm(forms.Form):
    """
    Validates a booking request before it reaches the slot store.
    Times are normalised to zero-padded 'HH:MM' in cleaned_data.
    """

    doctor_id = forms.IntegerField(min_value=1)
    patient_id = forms.IntegerField(min_value=1)
    patient_name = forms.CharField(max_length=120, required=False)
    date = forms.DateField(input_formats=["%Y-%m-%d"])
    start_time = forms.TimeField(input_formats=TIME_INPUT_FORMATS)
    end_time = forms.TimeField(input_formats=TIME_INPUT_FORMATS)
    consultation_type = forms.ChoiceField(choices=ConsultationType.choices)
    kind = forms.ChoiceField(choices=AppointmentKind.choices, required=False)
    symptoms = forms.CharField(required=False)

    def clean(self):
        cleaned = super().clean()
        start = cleaned.get("start_time")
        end = cleaned.get("end_time")

        # Check if either is missing; let normal "required" errors handle it
        if not start or not end:
            return cleaned

        if end <= start:
            raise forms.ValidationError("The end time must be after the start time.")

        cleaned["start_time"] = format_hhmm(start)
        cleaned["end_time"] = format_hhmm(end)
        cleaned["kind"] = cleaned.get("kind") or AppointmentKind.REGULAR
        cleaned["symptoms"] = (cleaned.get("symptoms") or "").strip()
        cleaned["patient_name"] = (cleaned.get("patient_name") or "").strip()
        return cleaned


class RescheduleForm(forms.Form):
    date = forms.DateField(input_formats=["%Y-%m-%d"])
    start_time = forms.TimeField(input_formats=TIME_INPUT_FORMATS)
    end_time = forms.TimeField(input_formats=TIME_INPUT_FORMATS)

    def clean(self):
        cleaned = super().clean()
        start = cleaned.get("start_time")
        end = cleaned.get("end_time")
        if not start or not end:
            return cleaned
        if end <= start:
            raise forms.ValidationError("The end time must be after the start time.")
        cleaned["start_time"] = format_hhmm(start)
        cleaned["end_time"] = format_hhmm(end)
        return cleaned


class AvailabilityForm(forms.Form):
    """
    Working hours for one day. Breaks arrive as a list of
    {"start": "HH:MM", "end": "HH:MM", "kind": ..., "recurring": bool}.
    """

    regular_start = forms.TimeField(input_formats=TIME_INPUT_FORMATS)
    regular_end = forms.TimeField(input_formats=TIME_INPUT_FORMATS)
    emergency_start = forms.TimeField(input_formats=TIME_INPUT_FORMATS, required=False)
    emergency_end = forms.TimeField(input_formats=TIME_INPUT_FORMATS, required=False)
    slot_duration = forms.IntegerField(min_value=5, max_value=240, required=False)
    is_available = forms.BooleanField(required=False)
    breaks = forms.JSONField(required=False)

    def clean(self):
        cleaned = super().clean()
        start = cleaned.get("regular_start")
        end = cleaned.get("regular_end")
        if not start or not end:
            return cleaned

        if end <= start:
            raise forms.ValidationError("End time must be after start time.")
        cleaned["regular_start"] = format_hhmm(start)
        cleaned["regular_end"] = format_hhmm(end)

        e_start = cleaned.get("emergency_start")
        e_end = cleaned.get("emergency_end")
        if bool(e_start) != bool(e_end):
            raise forms.ValidationError("Emergency hours need both a start and an end.")
        if e_start and e_end:
            if e_end <= e_start:
                raise forms.ValidationError("Emergency end time must be after its start time.")
            cleaned["emergency_start"] = format_hhmm(e_start)
            cleaned["emergency_end"] = format_hhmm(e_end)
        else:
            cleaned["emergency_start"] = ""
            cleaned["emergency_end"] = ""

        cleaned["breaks"] = self._clean_breaks(
            cleaned.get("breaks") or [],
            cleaned["regular_start"],
            cleaned["regular_end"],
        )
        return cleaned

    def _clean_breaks(self, breaks, day_start, day_end):
        if not isinstance(breaks, list):
            raise forms.ValidationError("Breaks must be a list.")

        normalized = []
        for item in breaks:
            try:
                b_start = format_hhmm(item["start"])
                b_end = format_hhmm(item["end"])
            except (KeyError, TypeError, ValueError):
                raise forms.ValidationError("Each break needs a valid start and end (HH:MM).")

            if to_minutes(b_end) <= to_minutes(b_start):
                raise forms.ValidationError(f"Break {b_start}-{b_end} ends before it starts.")
            if to_minutes(b_start) < to_minutes(day_start) or to_minutes(b_end) > to_minutes(day_end):
                raise forms.ValidationError(f"Break {b_start}-{b_end} is outside working hours.")

            # Check for overlap with breaks already accepted
            for other in normalized:
                if ranges_overlap(b_start, b_end, other["start"], other["end"]):
                    raise forms.ValidationError(
                        f"Break {b_start}-{b_end} overlaps {other['start']}-{other['end']}."
                    )

            kind = item.get("kind") or BreakKind.QUICK
            if kind not in BreakKind.values:
                raise forms.ValidationError(f"Unknown break type {kind!r}.")

            normalized.append({
                "start": b_start,
                "end": b_end,
                "kind": kind,
                "recurring": bool(item.get("recurring", False)),
            })

        return sorted(normalized, key=lambda b: b["start"])
