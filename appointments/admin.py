from django.contrib import admin

from .models import (
    Appointment,
    AvailabilityDay,
    Break,
    ClinicSettings,
    DoctorSchedule,
    StatusHistoryEntry,
    TimeSlot,
)


class StatusHistoryInline(admin.TabularInline):
    model = StatusHistoryEntry
    extra = 0
    can_delete = False
    readonly_fields = ("status", "timestamp", "actor_id", "actor_role", "notes")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    # table columns
    list_display = ("id", "date", "start_time", "end_time", "patient_name", "doctor", "kind", "status", "reminder_sent")
    list_display_links = ("id", "patient_name")

    # right sidebar filters
    list_filter = ("status", "kind", "consultation_type", "date")

    # top search bar
    search_fields = ("patient_name", "symptoms", "notes")

    # date drilldown nav
    date_hierarchy = "date"

    # pagination
    list_per_page = 25

    # status and slot only change through the scheduling services
    readonly_fields = (
        "status", "date", "date_string", "start_time", "end_time", "reminder_sent",
        "cancelled_by", "cancel_reason", "reschedule_requested_by",
        "visit_started_at", "visit_ended_at", "created_at", "updated_at",
    )

    # how the edit form is grouped
    fieldsets = (
        ("Patient", {"fields": ("patient", "patient_name", "symptoms")}),
        ("Booking", {"fields": ("doctor", "date", "date_string", "start_time", "end_time", "kind", "consultation_type", "status")}),
        ("Payment", {"fields": ("payment_status", "payment_amount")}),
        ("Visit",   {"fields": ("visit_started_at", "visit_ended_at", "reminder_sent")}),
        ("Notes",   {"fields": ("notes", "cancelled_by", "cancel_reason", "reschedule_requested_by")}),
        ("Meta",    {"fields": ("created_at", "updated_at")}),
    )

    inlines = [StatusHistoryInline]

    def has_delete_permission(self, request, obj=None):
        return False


class TimeSlotInline(admin.TabularInline):
    model = TimeSlot
    extra = 0
    readonly_fields = ("start_time", "end_time", "kind", "is_booked", "is_break", "appointment", "patient")
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class BreakInline(admin.TabularInline):
    model = Break
    extra = 0


@admin.register(AvailabilityDay)
class AvailabilityDayAdmin(admin.ModelAdmin):
    list_display = ("doctor", "date", "is_available", "regular_start", "regular_end", "slot_duration")
    list_filter = ("is_available", "date")
    date_hierarchy = "date"
    inlines = [BreakInline, TimeSlotInline]


@admin.register(DoctorSchedule)
class DoctorScheduleAdmin(admin.ModelAdmin):
    list_display = ("doctor", "regular_start", "regular_end", "emergency_start", "emergency_end", "slot_duration")


@admin.register(ClinicSettings)
class ClinicSettingsAdmin(admin.ModelAdmin):
    list_display = ("__str__", "reminder_window_start", "reminder_window_end", "reminder_interval", "updated_at")

    def has_add_permission(self, request):
        return not ClinicSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
