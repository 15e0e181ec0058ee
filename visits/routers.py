"""
URL mappings for the clinic queue API.

Trailing slashes are omitted, matching the paths the front-desk and
dashboard clients call.
"""
from django.urls import include, path
from rest_framework_simplejwt.views import TokenRefreshView

from .auth_views import jwt_logout_view, login_view
from .views import health
from .views.audit import list_audit_logs
from .views.queue import (
    call_next,
    queue_collection,
    queue_entry_begin,
    queue_entry_call,
    queue_entry_complete,
    queue_entry_detail,
    queue_entry_history,
    queue_entry_move,
    queue_entry_no_show,
    queue_entry_status,
    queue_metrics,
)

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/logout', jwt_logout_view, name='logout_view'),
    # Queue
    path('api/queue', queue_collection),
    path('api/queue/call-next', call_next),
    path('api/queue/metrics', queue_metrics),
    path('api/queue/<uuid:entry_id>', queue_entry_detail),
    path('api/queue/<uuid:entry_id>/status', queue_entry_status),
    path('api/queue/<uuid:entry_id>/move', queue_entry_move),
    path('api/queue/<uuid:entry_id>/call', queue_entry_call),
    path('api/queue/<uuid:entry_id>/begin', queue_entry_begin),
    path('api/queue/<uuid:entry_id>/complete', queue_entry_complete),
    path('api/queue/<uuid:entry_id>/no-show', queue_entry_no_show),
    path('api/queue/<uuid:entry_id>/history', queue_entry_history),
    # Audit
    path('api/audit-logs', list_audit_logs),
]
