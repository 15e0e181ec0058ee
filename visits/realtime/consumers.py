import json

from channels.generic.websocket import AsyncWebsocketConsumer

from visits.services.notify import QUEUE_GROUP


class QueueUpdatesConsumer(AsyncWebsocketConsumer):
    """Waiting-room screens and staff dashboards listen here for queue changes."""

    async def connect(self):
        await self.channel_layer.group_add(QUEUE_GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(QUEUE_GROUP, self.channel_name)

    async def queue_refresh(self, event):
        # event: {"type": "queue.refresh", "event": "...", "entryId": "...", "status": "...", "ts": "..."}
        await self.send(json.dumps(event))
