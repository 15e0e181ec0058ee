"""
Visit lifecycle rules.

Everything in this module is pure: no database access and no clock.  The
service layer (``visits.services.queue``) reads a row, asks this module
which transition is allowed and which fields must change, then writes the
result back with a version check.

Statuses move forward ``waiting -> called -> in-progress -> completed``;
``no-show`` can be reached from ``waiting`` or ``called``.  Staff may also
override the status freely (``set_status``), in which case the timestamp
fields are still stamped on first entry and never rewritten afterwards.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

WAITING = 'waiting'
CALLED = 'called'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'
NO_SHOW = 'no-show'

STATUSES = (WAITING, CALLED, IN_PROGRESS, COMPLETED, NO_SHOW)
TERMINAL_STATUSES = frozenset({COMPLETED, NO_SHOW})

URGENT = 'urgent'
NORMAL = 'normal'
LOW = 'low'

PRIORITIES = (URGENT, NORMAL, LOW)
PRIORITY_RANK = {URGENT: 0, NORMAL: 1, LOW: 2}

UP = 'up'
DOWN = 'down'
DIRECTIONS = (UP, DOWN)

TRANSITIONS: dict[str, frozenset[str]] = {
    WAITING: frozenset({CALLED, NO_SHOW}),
    CALLED: frozenset({IN_PROGRESS, NO_SHOW}),
    IN_PROGRESS: frozenset({COMPLETED}),
    COMPLETED: frozenset(),
    NO_SHOW: frozenset(),
}

# Entering any of these means the patient has been called at some point.
_CALLED_OR_LATER = frozenset({CALLED, IN_PROGRESS, COMPLETED})


def can_transition(current: str, new: str) -> bool:
    """Return True if ``current -> new`` is on the recommended path."""
    return new in TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def priority_rank(priority: str) -> int:
    return PRIORITY_RANK[priority]


def order_key(priority: str, position: int, check_in_time: datetime) -> tuple:
    """Sort key for the displayed queue: tier first, then position, then arrival."""
    return (PRIORITY_RANK[priority], position, check_in_time)


def whole_minutes(start: datetime, end: datetime) -> int:
    """Minutes between two instants, truncated toward zero and never negative."""
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def estimate_wait_minutes(ahead: int, average_service_minutes: int) -> int:
    """Estimated wait for a patient with ``ahead`` patients served first."""
    return max(ahead, 0) * max(average_service_minutes, 0)


def stamp_changes(
    *,
    new_status: str,
    now: datetime,
    check_in_time: datetime,
    called_time: Optional[datetime],
    completed_time: Optional[datetime],
) -> dict:
    """Return the timestamp fields to write when entering ``new_status``.

    Stamps are first-write-wins: a field that is already set is never part
    of the result.  Each stamp is clamped to the previous one so that
    ``check_in_time <= called_time <= completed_time`` holds even when the
    clock steps backwards.
    """
    changes: dict = {}
    if new_status in _CALLED_OR_LATER and called_time is None:
        called_time = max(now, check_in_time)
        changes['called_time'] = called_time
        changes['actual_wait_time'] = whole_minutes(check_in_time, called_time)
    if new_status == COMPLETED and completed_time is None:
        floor = called_time or check_in_time
        changes['completed_time'] = max(now, floor)
    return changes


def append_note(existing: str, note: Optional[str]) -> str:
    """Notes only grow; a new note is added on its own line."""
    note = (note or '').strip()
    if not note:
        return existing or ''
    if not existing:
        return note
    return f"{existing}\n{note}"
