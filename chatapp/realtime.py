"""
Change feed
Publishes committed row changes and fans them out to subscribers keyed by
table, event type and a column filter (``conversation_id=eq.<id>``).
With Redis configured the events travel over a pub/sub channel so that
every app instance delivers them to its own subscribers.
"""
import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from . import core
from .models import utcnow

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'
ANY = '*'
EVENT_TYPES = (INSERT, UPDATE, DELETE, ANY)

TABLES = ('profiles', 'contacts', 'conversations', 'conversation_participants', 'messages')

REDIS_CHANNEL = 'chat_changes'

_sequence = itertools.count(1)


@dataclass
class ChangeEvent:
    table: str
    type: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: datetime = field(default_factory=utcnow)
    seq: int = field(default_factory=lambda: next(_sequence))

    @property
    def record(self) -> Dict[str, Any]:
        """The row the event is about: new values, or old ones for deletes."""
        return self.old if self.type == DELETE else self.new

    def to_wire(self) -> dict:
        return jsonable_encoder({
            'table': self.table,
            'type': self.type,
            'new': self.new,
            'old': self.old,
            'commit_timestamp': self.commit_timestamp,
            'seq': self.seq,
        })

    @classmethod
    def from_wire(cls, data: dict) -> 'ChangeEvent':
        return cls(
            table=data['table'],
            type=data['type'],
            new=data.get('new') or {},
            old=data.get('old') or {},
            commit_timestamp=datetime.fromisoformat(data['commit_timestamp']),
            seq=data.get('seq', 0),
        )


@dataclass(frozen=True)
class RowFilter:
    """Parsed ``column=op.value`` filter; op is one of eq, neq, in."""

    column: str
    op: str
    values: tuple

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional['RowFilter']:
        if not text:
            return None
        if not isinstance(text, str):
            raise ValueError(f'filter must be a string, got {type(text).__name__}')
        column, sep, rest = text.partition('=')
        op, dot, value = rest.partition('.')
        if not sep or not dot or not column:
            raise ValueError(f'malformed filter {text!r}')
        if op in ('eq', 'neq'):
            return cls(column=column, op=op, values=(value,))
        if op == 'in':
            if not (value.startswith('(') and value.endswith(')')):
                raise ValueError(f'malformed in-list in filter {text!r}')
            items = tuple(v.strip() for v in value[1:-1].split(',') if v.strip())
            return cls(column=column, op=op, values=items)
        raise ValueError(f'unsupported filter operator {op!r}')

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.column not in row:
            return False
        actual = row[self.column]
        actual = '' if actual is None else str(actual)
        if self.op == 'neq':
            return actual != self.values[0]
        return actual in self.values


Callback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    def __init__(self, feed: 'ChangeFeed', table: str, event: str, row_filter: Optional[RowFilter], callback: Callback):
        self.feed = feed
        self.table = table
        self.event = event
        self.filter = row_filter
        self.callback = callback
        self.active = True

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        if self.event != ANY and self.event != change.type:
            return False
        if self.filter is None:
            return True
        if self.filter.matches(change.record):
            return True
        # an update that moved the row out of the filter is still news to the subscriber
        return change.type == UPDATE and self.filter.matches(change.old)

    def unsubscribe(self):
        if self.active:
            self.active = False
            self.feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._listener: Optional[asyncio.Task] = None

    def subscribe(self, table: str, event: str = ANY, filter: Optional[str] = None, callback: Callback = None) -> Subscription:
        if table not in TABLES:
            raise ValueError(f'unknown table {table!r}')
        if event not in EVENT_TYPES:
            raise ValueError(f'unknown event {event!r}')
        if callback is None:
            raise ValueError('callback is required')
        sub = Subscription(self, table, event, RowFilter.parse(filter), callback)
        self._subscriptions.append(sub)
        core.OPEN_SUBSCRIPTIONS.inc()
        return sub

    def _remove(self, sub: Subscription):
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            return
        core.OPEN_SUBSCRIPTIONS.dec()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, change: ChangeEvent):
        core.CHANGES_PUBLISHED.labels(table=change.table, type=change.type).inc()
        if core.REDIS is not None and self._listener is not None:
            try:
                await core.REDIS.publish(REDIS_CHANNEL, json.dumps(change.to_wire()))
                return
            except Exception as e:
                logger.warning({'msg': 'redis_publish_failed', 'error': str(e)})
        await self.dispatch(change)

    async def dispatch(self, change: ChangeEvent):
        for sub in list(self._subscriptions):
            if not sub.active or not sub.matches(change):
                continue
            try:
                await sub.callback(change)
            except Exception:
                logger.exception({'msg': 'subscriber_failed', 'table': change.table, 'seq': change.seq})

    async def start_redis_listener(self):
        if core.REDIS is None or self._listener is not None:
            return
        pubsub = core.REDIS.pubsub()
        await pubsub.subscribe(REDIS_CHANNEL)
        self._listener = asyncio.create_task(self._listen(pubsub))

    async def _listen(self, pubsub):
        try:
            async for item in pubsub.listen():
                if not item or item.get('type') != 'message':
                    continue
                try:
                    change = ChangeEvent.from_wire(json.loads(item['data']))
                except (ValueError, KeyError) as e:
                    logger.warning({'msg': 'bad_change_frame', 'error': str(e)})
                    continue
                await self.dispatch(change)
        finally:
            await pubsub.aclose()

    async def stop(self):
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None


feed = ChangeFeed()
