from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from visits.models import OperationLog

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str] = None,
               object_id: Optional[Any] = None, detail: Optional[Dict[str, Any]] = None,
               ip: Optional[str] = None, status: str = 'success') -> OperationLog:
    return OperationLog.objects.create(
        user=user if isinstance(user, User) else None,
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail or {},
        ip=ip,
        status=status,
    )
