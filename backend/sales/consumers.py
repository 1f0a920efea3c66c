"""
WebSocket consumers for real-time sale events.

Broadcasts delivered outbox events (sale voided, items returned) to
connected clients.
"""
import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

from utils.constants import SALES_EVENTS_GROUP

logger = logging.getLogger(__name__)


class SalesConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer for sale events.

    Clients connect to ws://host/ws/sales/ to receive:
    - SaleVoided notifications
    - SaleReturned notifications

    Messages sent to clients:
    {
        "type": "sale.event",
        "event": {"id": ..., "event_type": "SaleVoided", "sale_id": ..., "payload": {...}}
    }
    """

    async def connect(self):
        """Join the sales group and accept the connection."""
        self.group_name = SALES_EVENTS_GROUP

        if self.channel_layer:
            await self.channel_layer.group_add(
                self.group_name,
                self.channel_name
            )
        else:
            logger.warning("Channel layer is None, WebSocket will work but no group messaging")

        await self.accept()

    async def disconnect(self, close_code):
        if self.channel_layer and hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(
                self.group_name,
                self.channel_name
            )

    async def receive(self, text_data=None, bytes_data=None):
        # broadcast-only channel
        pass

    async def sale_event(self, event):
        """Handler for 'sale.event' messages sent to the group."""
        await self.send(text_data=json.dumps({
            'type': 'sale.event',
            'event': event['event']
        }))
