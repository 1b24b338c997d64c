from django.contrib import admin

from .models import QueueDay, QueueEntry


class QueueEntryInline(admin.TabularInline):
    model = QueueEntry
    extra = 0
    fields = ("position", "patient_name", "scheduled_time", "status", "priority", "estimated_wait_time", "check_in_time")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(QueueDay)
class QueueDayAdmin(admin.ModelAdmin):
    # table columns
    list_display = ("id", "doctor", "date", "is_active", "current_delay", "average_consultation_time", "last_updated")

    # right sidebar filters
    list_filter = ("is_active", "date")

    # date drilldown nav
    date_hierarchy = "date"

    readonly_fields = ("average_consultation_time", "last_updated")
    inlines = [QueueEntryInline]
