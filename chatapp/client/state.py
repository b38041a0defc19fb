"""
Client-side application state.

Rows from every table live in a RowCache keyed by primary key. Change events
are merged row by row: a row version (its newest timestamp) never goes
backwards, and deleted ids are tombstoned so a late insert cannot bring them
back. Full loads carry a generation number; a load that finishes after a
newer one started is dropped instead of overwriting fresher state.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..aggregation import as_utc, summarize_conversations


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


VERSION_FIELDS = {
    'profiles': ('updated_at', 'created_at'),
    'contacts': ('created_at',),
    'conversations': ('updated_at', 'created_at'),
    'conversation_participants': ('last_read_at', 'joined_at'),
    'messages': ('updated_at', 'created_at'),
}


class RowCache:
    def __init__(self, table: str):
        self.table = table
        self._rows: Dict[str, dict] = {}
        self._versions: Dict[str, Optional[datetime]] = {}
        self._tombstones: Dict[str, Optional[datetime]] = {}
        self._generation = 0
        self._load_started: Dict[int, datetime] = {}

    def __len__(self):
        return len(self._rows)

    def __contains__(self, key) -> bool:
        return str(key) in self._rows

    def get(self, key) -> Optional[dict]:
        return self._rows.get(str(key))

    def values(self) -> List[dict]:
        return list(self._rows.values())

    def version_of(self, row: dict) -> Optional[datetime]:
        for name in VERSION_FIELDS[self.table]:
            if row.get(name):
                return as_utc(row[name])
        return None

    def upsert(self, row: dict) -> bool:
        key = str(row['id'])
        version = self.version_of(row)
        if key in self._tombstones:
            tomb = self._tombstones[key]
            if tomb is None or version is None or version <= tomb:
                return False
            del self._tombstones[key]
        current = self._versions.get(key)
        if key in self._rows and current is not None and version is not None and version < current:
            return False
        self._rows[key] = row
        self._versions[key] = version
        return True

    def remove(self, row: dict, at: Any = None) -> bool:
        key = str(row['id'])
        self._tombstones[key] = as_utc(at) if at is not None else self.version_of(row)
        self._versions.pop(key, None)
        return self._rows.pop(key, None) is not None

    def apply(self, change: dict) -> bool:
        kind = change.get('type')
        if kind in ('INSERT', 'UPDATE'):
            return self.upsert(change['new'])
        if kind == 'DELETE':
            return self.remove(change['old'], change.get('commit_timestamp'))
        return False

    def begin_load(self) -> int:
        self._generation += 1
        self._load_started[self._generation] = utcnow()
        return self._generation

    def finish_load(self, generation: int, rows: Iterable[dict]) -> bool:
        started = self._load_started.pop(generation, None)
        if generation != self._generation or started is None:
            return False
        loaded = {str(r['id']): r for r in rows}
        for key in loaded:
            tomb = self._tombstones.get(key, started)
            if tomb is None or tomb <= started:
                self._tombstones.pop(key, None)
        for key, row in self._rows.items():
            version = self._versions.get(key)
            if version is None:
                continue
            if key in loaded:
                fetched = self.version_of(loaded[key])
                if fetched is not None and version > fetched:
                    loaded[key] = row
            elif version > started:
                # arrived through an event while the load was in flight
                loaded[key] = row
        self._rows = {}
        self._versions = {}
        for row in loaded.values():
            self.upsert(row)
        return True


def _strip(row: dict, *nested: str) -> dict:
    return {k: v for k, v in row.items() if k not in nested}


@dataclass
class AppState:
    """Everything a screen needs, passed around explicitly."""

    current_user: Optional[dict] = None
    selected_conversation_id: Optional[str] = None
    caches: Dict[str, RowCache] = field(default_factory=lambda: {t: RowCache(t) for t in VERSION_FIELDS})

    def cache(self, table: str) -> RowCache:
        return self.caches[table]

    @property
    def user_id(self) -> Optional[str]:
        return str(self.current_user['id']) if self.current_user else None

    def select_conversation(self, conversation_id: Optional[str]):
        self.selected_conversation_id = str(conversation_id) if conversation_id else None

    def apply_change(self, payload: dict) -> bool:
        cache = self.caches.get(payload.get('table'))
        if cache is None:
            return False
        changed = cache.apply(payload)
        if (payload.get('table') == 'conversation_participants' and payload.get('type') == 'DELETE'
                and str(payload['old'].get('user_id')) == self.user_id):
            self._forget_conversation(str(payload['old'].get('conversation_id')))
        return changed

    def _forget_conversation(self, conversation_id: str):
        if self.selected_conversation_id == conversation_id:
            self.selected_conversation_id = None
        self.caches['conversations'].remove({'id': conversation_id}, utcnow())
        for table in ('conversation_participants', 'messages'):
            cache = self.caches[table]
            for row in cache.values():
                if str(row['conversation_id']) == conversation_id:
                    cache.remove(row, utcnow())

    def load_conversations(self, summaries: Iterable[dict], messages: Dict[str, List[dict]], generation: Dict[str, int]) -> bool:
        """Install a full load; ``generation`` holds the tokens from begin_load per table."""
        summaries = list(summaries)
        conversations = [_strip(s, 'participants', 'last_message', 'unread_count') for s in summaries]
        participants, profiles = [], {}
        for s in summaries:
            for p in s.get('participants', []):
                participants.append(_strip(p, 'profile'))
                if p.get('profile'):
                    profiles[str(p['profile']['id'])] = p['profile']
        rows = [_strip(m, 'sender') for conv_messages in messages.values() for m in conv_messages]
        ok = self.caches['conversations'].finish_load(generation['conversations'], conversations)
        ok = self.caches['conversation_participants'].finish_load(generation['conversation_participants'], participants) and ok
        ok = self.caches['messages'].finish_load(generation['messages'], rows) and ok
        for profile in profiles.values():
            self.caches['profiles'].upsert(profile)
        return ok

    def begin_conversation_load(self) -> Dict[str, int]:
        return {t: self.caches[t].begin_load() for t in ('conversations', 'conversation_participants', 'messages')}

    def conversation_summaries(self) -> List[dict]:
        if not self.current_user:
            return []
        return summarize_conversations(
            self.user_id,
            self.caches['conversations'].values(),
            self.caches['conversation_participants'].values(),
            self.caches['profiles'].values(),
            self.caches['messages'].values(),
        )

    def messages_for(self, conversation_id: str) -> List[dict]:
        conversation_id = str(conversation_id)
        rows = [m for m in self.caches['messages'].values() if str(m['conversation_id']) == conversation_id]
        rows.sort(key=lambda m: as_utc(m['created_at']))
        return rows

    def selected_conversation(self) -> Optional[dict]:
        if not self.selected_conversation_id:
            return None
        for summary in self.conversation_summaries():
            if str(summary['id']) == self.selected_conversation_id:
                return summary
        return None


async def sync_conversations(client, state: AppState) -> bool:
    """Full load of the conversation list and its messages through ``client``."""
    generation = state.begin_conversation_load()
    summaries = await client.list_conversations()
    messages = {}
    for summary in summaries:
        messages[str(summary['id'])] = await client.list_messages(summary['id'])
    return state.load_conversations(summaries, messages, generation)
