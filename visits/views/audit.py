"""
Audit log listing for administrators.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import OperationLog
from ..permissions import IsAdminRole
from ..serializers.queue import AuditLogQuerySerializer, operation_log_to_dict
from ..services.queue import clinic_day_bounds


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def list_audit_logs(request):
    q = AuditLogQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    qs = OperationLog.objects.select_related('user').order_by('-created_at', '-id')
    if vd.get('action'):
        qs = qs.filter(action=vd['action'])
    if vd.get('userId'):
        qs = qs.filter(user_id=vd['userId'])
    if vd.get('objectId'):
        qs = qs.filter(object_id=vd['objectId'])
    if vd.get('dateFrom'):
        qs = qs.filter(created_at__gte=clinic_day_bounds(vd['dateFrom'])[0])
    if vd.get('dateTo'):
        qs = qs.filter(created_at__lt=clinic_day_bounds(vd['dateTo'])[1])
    total = qs.count()
    page = vd.get('page') or 1
    page_size = vd.get('pageSize') or 50
    start = (page - 1) * page_size
    return Response({
        'ok': True,
        'data': [operation_log_to_dict(log) for log in qs[start:start + page_size]],
        'pagination': {'total': total, 'page': page, 'pageSize': page_size},
    })
