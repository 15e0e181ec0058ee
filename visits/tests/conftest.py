"""
Shared fixtures: a controllable clock for the queue service and staff users.
"""
from datetime import datetime, timedelta

import pytest
from django.core.cache import cache
from django.utils import timezone

from visits.models import User
from visits.services import queue as queue_service


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now

    def at(self, hour, minute=0):
        local = timezone.localtime(self.now)
        self.now = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
        return self.now


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def clock(monkeypatch):
    """Freeze the queue service clock at 09:00 local time on a fixed day."""
    c = Clock(timezone.make_aware(datetime(2026, 3, 2, 9, 0)))
    monkeypatch.setattr(queue_service, '_now', c)
    return c


@pytest.fixture
def nurse(db):
    return User.objects.create_user(username='nurse1', password='P@ssw0rd1', role='nurse', department='general')


@pytest.fixture
def admin(db):
    return User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin')
