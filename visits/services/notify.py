"""
Side effects fired after a queue change commits.

Two collaborators are involved: the channel layer, which pushes a
refresh event to every connected waiting-room screen, and an optional
SMS backend (``settings.QUEUE_SMS_BACKEND``, a dotted path to a callable
taking the called entry).  Neither may undo a committed queue change,
so failures here are logged and left at that.
"""
import logging
from functools import lru_cache
from typing import Callable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

QUEUE_GROUP = "queue"


@lru_cache(maxsize=1)
def _sms_backend(path: str) -> Optional[Callable]:
    return import_string(path) if path else None


def broadcast_refresh(event: str, entry) -> None:
    """Tell connected screens that ``entry`` changed."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        "type": "queue.refresh",
        "event": event,
        "entryId": str(entry.pk),
        "status": entry.status,
        "department": entry.department,
        "ts": timezone.now().isoformat(),
    }
    try:
        async_to_sync(channel_layer.group_send)(QUEUE_GROUP, payload)
    except Exception:
        logger.exception("Queue broadcast failed", extra={'event': event, 'entry_id': str(entry.pk)})


def patient_called(entry) -> None:
    """Notify the patient (SMS) and the screens that ``entry`` was called."""
    broadcast_refresh("called", entry)
    backend = _sms_backend(getattr(settings, 'QUEUE_SMS_BACKEND', '') or '')
    if backend is None:
        logger.info("No SMS backend configured; skipping patient notification",
                    extra={'entry_id': str(entry.pk), 'patient_id': entry.patient_id})
        return
    try:
        backend(entry)
    except Exception:
        logger.exception("SMS notification failed", extra={'entry_id': str(entry.pk), 'patient_id': entry.patient_id})


def log_sms_backend(entry) -> None:
    """Development SMS backend: writes the message to the log."""
    room = f" to room {entry.room_id}" if entry.room_id else ""
    logger.info("SMS to patient %s: ticket #%s, please proceed%s", entry.patient_id, entry.number, room)
