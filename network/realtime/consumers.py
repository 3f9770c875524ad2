import json

from channels.generic.websocket import AsyncWebsocketConsumer

from network.services.coordinator import QUERY_FLOW_GROUP


class QueryFlowConsumer(AsyncWebsocketConsumer):
    """Streams the steps of every federated query as they happen."""
    GROUP = QUERY_FLOW_GROUP

    async def connect(self):
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def query_step(self, event):
        # event: {"type": "query.step", "queryId": "...", "step": {...}}
        await self.send(json.dumps({"type": "query.step", "queryId": event["queryId"], "step": event["step"]}))
