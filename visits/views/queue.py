"""
Queue endpoints.

Staff check patients in, call the next patient, move them through the
visit and read the dashboard metrics.  All state changes go through
:mod:`visits.services.queue`; these views only validate input and shape
the JSON.  Removing an entry is restricted to administrators.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsAdminRole, IsStaffRole
from ..serializers.queue import (
    AssignmentSerializer,
    CallNextSerializer,
    EnqueueSerializer,
    MetricsQuerySerializer,
    MoveSerializer,
    QueueListQuerySerializer,
    StatusUpdateSerializer,
    entry_to_dict,
    transition_to_dict,
)
from ..services import queue as queue_service
from ..services.metrics import compute_metrics


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_collection(request):
    """GET lists today's queue in serving order; POST checks a patient in."""
    if request.method == 'POST':
        s = EnqueueSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        vd = s.validated_data
        entry = queue_service.enqueue(
            patient_id=vd['patientId'],
            appointment_type=vd['appointmentType'],
            priority=vd['priority'],
            is_walk_in=vd['isWalkIn'],
            department=vd['department'],
            notes=vd['notes'],
            operator=request.user,
        )
        return Response(entry_to_dict(entry), status=status.HTTP_201_CREATED)

    q = QueueListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    department = vd.get('department') or None
    entries = queue_service.list_entries(
        department=department,
        status=vd.get('status'),
        priority=vd.get('priority'),
        day=vd.get('date'),
        include_all=vd['all'],
        sort=vd.get('sort'),
        order=vd['order'],
    )
    # only waiting entries have a live estimate; everyone else has been called
    estimates = queue_service.live_estimates(department)
    return Response([entry_to_dict(e, estimates.get(e.pk, 0)) for e in entries])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def call_next(request):
    """Call the highest-priority waiting patient (optionally per department)."""
    data = {**request.query_params.dict(), **request.data}
    s = CallNextSerializer(data=data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    entry = queue_service.call_next(
        department=vd.get('department') or None,
        provider_id=vd.get('providerId'),
        room_id=vd.get('roomId'),
        operator=request.user,
    )
    return Response(entry_to_dict(entry))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_metrics(request):
    q = MetricsQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    metrics = compute_metrics(department=q.validated_data.get('department') or None)
    return Response(metrics.as_dict())


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_detail(request, entry_id):
    """GET one entry; DELETE removes it permanently (administrators only)."""
    if request.method == 'DELETE':
        if not IsAdminRole().has_permission(request, None):
            raise PermissionDenied('only administrators can remove queue entries')
        queue_service.remove(entry_id, operator=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)
    entry = queue_service.get_entry(entry_id)
    return Response(entry_to_dict(entry, queue_service.current_estimate(entry)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_history(request, entry_id):
    return Response([transition_to_dict(t) for t in queue_service.entry_history(entry_id)])


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_status(request, entry_id):
    """Set any status (staff override); timestamps are stamped once only."""
    s = StatusUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    entry = queue_service.set_status(
        entry_id,
        vd['status'],
        provider_id=vd.get('providerId'),
        room_id=vd.get('roomId'),
        notes=vd.get('notes'),
        expected_version=vd.get('version'),
        operator=request.user,
    )
    return Response(entry_to_dict(entry))


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_move(request, entry_id):
    s = MoveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = queue_service.move(
        entry_id,
        s.validated_data['direction'],
        department=s.validated_data.get('department') or None,
        operator=request.user,
    )
    return Response(entry_to_dict(entry))


def _named_transition(request, entry_id, operation):
    s = AssignmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    kwargs = {'expected_version': vd.get('version'), 'operator': request.user}
    if operation in (queue_service.call_entry, queue_service.begin):
        kwargs.update(provider_id=vd.get('providerId'), room_id=vd.get('roomId'))
    else:
        kwargs['notes'] = vd.get('notes')
    return Response(entry_to_dict(operation(entry_id, **kwargs)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_call(request, entry_id):
    """Call a specific waiting patient out of order."""
    return _named_transition(request, entry_id, queue_service.call_entry)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_begin(request, entry_id):
    return _named_transition(request, entry_id, queue_service.begin)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_complete(request, entry_id):
    return _named_transition(request, entry_id, queue_service.complete)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def queue_entry_no_show(request, entry_id):
    return _named_transition(request, entry_id, queue_service.mark_no_show)
