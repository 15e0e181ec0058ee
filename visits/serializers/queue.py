from rest_framework import serializers

from visits import lifecycle
from visits.services.queue import REFERENCE_MAX_LENGTH, REFERENCE_RE, SORT_FIELDS, SORT_ORDERS


def _reference_field(**kwargs):
    return serializers.RegexField(REFERENCE_RE, max_length=REFERENCE_MAX_LENGTH, **kwargs)


class EnqueueSerializer(serializers.Serializer):
    patientId = _reference_field()
    appointmentType = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    priority = serializers.ChoiceField(choices=lifecycle.PRIORITIES, default=lifecycle.NORMAL)
    isWalkIn = serializers.BooleanField(required=False, default=False)
    department = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class AssignmentSerializer(serializers.Serializer):
    providerId = _reference_field(required=False, allow_blank=True, allow_null=True)
    roomId = _reference_field(required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    version = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class StatusUpdateSerializer(AssignmentSerializer):
    status = serializers.ChoiceField(choices=lifecycle.STATUSES)


class MoveSerializer(serializers.Serializer):
    direction = serializers.ChoiceField(choices=lifecycle.DIRECTIONS)
    department = serializers.CharField(required=False, allow_blank=True, max_length=100)


class CallNextSerializer(serializers.Serializer):
    department = serializers.CharField(required=False, allow_blank=True, max_length=100)
    providerId = _reference_field(required=False, allow_blank=True, allow_null=True)
    roomId = _reference_field(required=False, allow_blank=True, allow_null=True)


class QueueListQuerySerializer(serializers.Serializer):
    department = serializers.CharField(required=False, allow_blank=True, max_length=100)
    status = serializers.ChoiceField(choices=lifecycle.STATUSES, required=False)
    priority = serializers.ChoiceField(choices=lifecycle.PRIORITIES, required=False)
    date = serializers.DateField(required=False)
    all = serializers.BooleanField(required=False, default=False)
    sort = serializers.ChoiceField(choices=list(SORT_FIELDS), required=False)
    order = serializers.ChoiceField(choices=SORT_ORDERS, required=False, default='asc')


class MetricsQuerySerializer(serializers.Serializer):
    department = serializers.CharField(required=False, allow_blank=True, max_length=100)


class AuditLogQuerySerializer(serializers.Serializer):
    action = serializers.CharField(required=False, allow_blank=True, max_length=64)
    userId = serializers.IntegerField(required=False, min_value=1)
    objectId = serializers.CharField(required=False, allow_blank=True, max_length=64)
    dateFrom = serializers.DateField(required=False)
    dateTo = serializers.DateField(required=False)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200)


def _ts(value):
    return value.isoformat() if value else None


def entry_to_dict(entry, estimate=None) -> dict:
    return {
        'id': str(entry.id),
        'number': entry.number,
        'patientId': entry.patient_id,
        'appointmentType': entry.appointment_type,
        'department': entry.department,
        'priority': entry.priority,
        'status': entry.status,
        'position': entry.position,
        'providerId': entry.provider_id,
        'roomId': entry.room_id,
        'checkInTime': _ts(entry.check_in_time),
        'calledTime': _ts(entry.called_time),
        'completedTime': _ts(entry.completed_time),
        'estimatedWaitTime': entry.estimated_wait_time if estimate is None else estimate,
        'actualWaitTime': entry.actual_wait_time,
        'notes': entry.notes,
        'isWalkIn': entry.is_walk_in,
        'version': entry.version,
    }


def transition_to_dict(t) -> dict:
    return {
        'from': t.from_status,
        'to': t.to_status,
        'operator': t.operator.username if t.operator else '',
        'timestamp': _ts(t.timestamp),
        'reason': t.reason,
    }


def operation_log_to_dict(log) -> dict:
    return {
        'id': log.id,
        'action': log.action,
        'user': log.user.username if log.user else None,
        'objectType': log.object_type,
        'objectId': log.object_id,
        'detail': log.detail,
        'ip': log.ip,
        'status': log.status,
        'createdAt': _ts(log.created_at),
    }
