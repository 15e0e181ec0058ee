"""
Django admin registrations for the queue models.

Mostly for inspecting the queue and its audit trail during development;
status changes should go through the API so transitions are recorded.
"""

from django.contrib import admin

from .models import OperationLog, QueueEntry, QueueEntryTransition, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'department', 'is_staff', 'is_superuser')
    list_filter = ('role', 'department')
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ('number', 'patient_id', 'department', 'priority', 'status', 'position', 'check_in_time')
    list_filter = ('status', 'priority', 'department', 'is_walk_in')
    search_fields = ('id', 'patient_id', 'provider_id', 'room_id')
    readonly_fields = ('version', 'updated_at')


@admin.register(QueueEntryTransition)
class QueueEntryTransitionAdmin(admin.ModelAdmin):
    list_display = ('entry', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('entry__id', 'entry__patient_id', 'operator__username')


@admin.register(OperationLog)
class OperationLogAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'status', 'created_at')
    list_filter = ('action', 'status')
    search_fields = ('object_id', 'user__username')
