import json
import logging

import pytest
from asgiref.sync import async_to_sync

from visits.realtime.consumers import QueueUpdatesConsumer
from visits.services import notify
from visits.services import queue as queue_service

pytestmark = pytest.mark.django_db

SENT = []


def record_sms(entry):
    SENT.append((entry.patient_id, entry.number))


def broken_sms(entry):
    raise RuntimeError('gateway down')


class FakeLayer:
    def __init__(self):
        self.messages = []

    async def group_send(self, group, message):
        self.messages.append((group, message))


@pytest.fixture
def layer(monkeypatch):
    fake = FakeLayer()
    monkeypatch.setattr(notify, 'get_channel_layer', lambda: fake)
    return fake


def test_broadcast_refresh_payload(clock, layer):
    entry = queue_service.enqueue(patient_id='p-a', department='cardiology')
    notify.broadcast_refresh('enqueued', entry)
    [(group, message)] = layer.messages
    assert group == 'queue'
    assert message['type'] == 'queue.refresh'
    assert message['event'] == 'enqueued'
    assert message['entryId'] == str(entry.pk)
    assert message['department'] == 'cardiology'


def test_patient_called_uses_configured_sms_backend(clock, layer, settings):
    settings.QUEUE_SMS_BACKEND = 'visits.tests.test_notify.record_sms'
    SENT.clear()
    queue_service.enqueue(patient_id='p-a')
    entry = queue_service.call_next()
    notify.patient_called(entry)
    assert SENT == [('p-a', 1)]
    assert layer.messages[0][1]['event'] == 'called'


def test_sms_failure_is_logged_not_raised(clock, layer, settings, caplog):
    settings.QUEUE_SMS_BACKEND = 'visits.tests.test_notify.broken_sms'
    entry = queue_service.enqueue(patient_id='p-a')
    with caplog.at_level(logging.ERROR, logger='visits.services.notify'):
        notify.patient_called(entry)
    assert 'SMS notification failed' in caplog.text


def test_consumer_forwards_refresh_events():
    consumer = QueueUpdatesConsumer()
    sent = []

    async def fake_send(text_data=None, bytes_data=None, close=False):
        sent.append(text_data)

    consumer.send = fake_send
    event = {'type': 'queue.refresh', 'event': 'called', 'entryId': 'abc'}
    async_to_sync(consumer.queue_refresh)(event)
    assert json.loads(sent[0]) == event
