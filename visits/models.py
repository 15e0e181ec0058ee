"""
Database models for the clinic queue.

One :class:`QueueEntry` row exists per patient visit.  Status changes
are recorded in :class:`QueueEntryTransition` and staff actions in
:class:`OperationLog`.  Patients themselves live in an external
registry and are referenced by ``patient_id`` only.
"""
from __future__ import annotations

import uuid
from django.contrib.auth.models import AbstractUser
from django.db import models

from . import lifecycle


class User(AbstractUser):
    """Clinic staff member.

    Every authenticated caller is staff; ``role`` only gates the
    administrative operations (hard delete, audit log).
    """
    ROLE_CHOICES = [
        ('receptionist', 'Receptionist'),
        ('nurse', 'Nurse'),
        ('doctor', 'Doctor'),
        ('admin', 'Administrator'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='receptionist')
    department = models.CharField(max_length=100, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class QueueEntry(models.Model):
    STATUS_CHOICES = [
        (lifecycle.WAITING, 'Waiting'),
        (lifecycle.CALLED, 'Called'),
        (lifecycle.IN_PROGRESS, 'In progress'),
        (lifecycle.COMPLETED, 'Completed'),
        (lifecycle.NO_SHOW, 'No-show'),
    ]
    PRIORITY_CHOICES = [
        (lifecycle.URGENT, 'Urgent'),
        (lifecycle.NORMAL, 'Normal'),
        (lifecycle.LOW, 'Low'),
    ]
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient_id = models.CharField(max_length=64, db_index=True)
    # Ticket number shown on the waiting-room screen, restarts every clinic day
    number = models.PositiveIntegerField()
    appointment_type = models.CharField(max_length=100, blank=True)
    department = models.CharField(max_length=100, blank=True, db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=lifecycle.NORMAL, db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=lifecycle.WAITING, db_index=True)
    position = models.PositiveIntegerField(default=0)
    provider_id = models.CharField(max_length=64, blank=True, null=True)
    room_id = models.CharField(max_length=64, blank=True, null=True)
    check_in_time = models.DateTimeField(db_index=True)
    called_time = models.DateTimeField(null=True, blank=True)
    completed_time = models.DateTimeField(null=True, blank=True)
    estimated_wait_time = models.PositiveIntegerField(default=0, help_text="Minutes, estimated at check-in")
    actual_wait_time = models.PositiveIntegerField(null=True, blank=True, help_text="Minutes from check-in to call")
    notes = models.TextField(blank=True)
    is_walk_in = models.BooleanField(default=False)
    # Bumped on every write; conditional updates compare against it
    version = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'department', 'check_in_time'], name='queue_status_dept_checkin_idx'),
        ]

    @property
    def is_terminal(self) -> bool:
        return lifecycle.is_terminal(self.status)

    def __str__(self) -> str:
        return f"#{self.number} {self.patient_id} ({self.status})"


class QueueEntryTransition(models.Model):
    """Records a status transition for a queue entry."""
    entry = models.ForeignKey(QueueEntry, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_transitions')
    timestamp = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.from_status} → {self.to_status}"


class OperationLog(models.Model):
    ACTION_CHOICES = (
        ("login", "login"),
        ("queue_enqueue", "queue_enqueue"),
        ("queue_call", "queue_call"),
        ("queue_status", "queue_status"),
        ("queue_move", "queue_move"),
        ("queue_remove", "queue_remove"),
    )
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL)
    action = models.CharField(max_length=64, choices=ACTION_CHOICES)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=64, blank=True, null=True)
    detail = models.JSONField(blank=True, null=True)
    ip = models.GenericIPAddressField(blank=True, null=True)
    status = models.CharField(max_length=16, default="success")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["action", "created_at"], name="oplog_action_created_idx"),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"
