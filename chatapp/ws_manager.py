"""
WebSocket side of the change feed.

Each connection owns its subscriptions; every change is re-checked against
the subscriber's select policy before it goes out, with memberships loaded
fresh so that joining or leaving a conversation takes effect immediately.
"""
import asyncio
import logging
from typing import Dict, Set

from fastapi import WebSocket

from .models import AsyncSessionLocal
from .policies import Caller, allows, load_policy_context
from .realtime import ChangeFeed, ChangeEvent, Subscription, ANY

logger = logging.getLogger(__name__)


class ChangeChannel:
    """One client connection and the subscriptions it opened."""

    def __init__(self, websocket: WebSocket, caller: Caller, feed: ChangeFeed):
        self.websocket = websocket
        self.caller = caller
        self.feed = feed
        self.subscriptions: Dict[str, Subscription] = {}
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict):
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def can_see(self, change: ChangeEvent) -> bool:
        async with AsyncSessionLocal() as session:
            ctx = await load_policy_context(session, self.caller)
        return allows(ctx, change.table, 'select', change.record)

    async def deliver(self, ref: str, change: ChangeEvent):
        if not await self.can_see(change):
            return
        await self.send({'type': 'change', 'ref': ref, 'payload': change.to_wire()})

    async def handle(self, frame: dict):
        action = frame.get('action')
        ref = str(frame.get('ref') or '')
        if action == 'subscribe':
            if not ref or ref in self.subscriptions:
                await self.send({'type': 'error', 'ref': ref, 'detail': 'ref missing or already in use'})
                return

            async def callback(change: ChangeEvent, ref=ref):
                await self.deliver(ref, change)

            try:
                sub = self.feed.subscribe(
                    frame.get('table'),
                    frame.get('event') or ANY,
                    frame.get('filter'),
                    callback,
                )
            except ValueError as e:
                await self.send({'type': 'error', 'ref': ref, 'detail': str(e)})
                return
            self.subscriptions[ref] = sub
            await self.send({'type': 'subscribed', 'ref': ref})
        elif action == 'unsubscribe':
            sub = self.subscriptions.pop(ref, None)
            if sub is None:
                await self.send({'type': 'error', 'ref': ref, 'detail': 'unknown subscription'})
                return
            sub.unsubscribe()
            await self.send({'type': 'unsubscribed', 'ref': ref})
        elif action == 'ping':
            await self.send({'type': 'pong'})
        else:
            await self.send({'type': 'error', 'ref': ref, 'detail': f'unknown action {action!r}'})

    def close(self):
        for sub in self.subscriptions.values():
            sub.unsubscribe()
        self.subscriptions.clear()


class ConnectionManager:
    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self.connections: Dict[object, Set[ChangeChannel]] = {}

    async def connect(self, websocket: WebSocket, caller: Caller) -> ChangeChannel:
        await websocket.accept()
        channel = ChangeChannel(websocket, caller, self.feed)
        self.connections.setdefault(caller.user_id, set()).add(channel)
        logger.info({'msg': 'ws_connected', 'user_id': str(caller.user_id)})
        return channel

    def disconnect(self, channel: ChangeChannel):
        channel.close()
        user_id = channel.caller.user_id
        self.connections.get(user_id, set()).discard(channel)
        if not self.connections.get(user_id):
            self.connections.pop(user_id, None)
        logger.info({'msg': 'ws_disconnected', 'user_id': str(user_id)})
