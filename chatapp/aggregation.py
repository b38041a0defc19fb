"""
Conversation summaries for the conversation list: participants with their
profiles, the newest message and the unread count, newest activity first.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID


def _get(row: Any, name: str) -> Any:
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def as_utc(value: Any) -> Optional[datetime]:
    """Normalize store timestamps; naive values are taken to be UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _key(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            return value
    return value


def unread_count(messages: Iterable[Any], last_read_at: Any) -> int:
    marker = as_utc(last_read_at)
    if marker is None:
        return sum(1 for _ in messages)
    return sum(1 for m in messages if as_utc(_get(m, 'created_at')) > marker)


def summarize_conversations(
    caller_id: UUID,
    conversations: Iterable[Any],
    participants: Iterable[Any],
    profiles: Iterable[Any],
    messages: Iterable[Any],
) -> List[Dict[str, Any]]:
    caller_id = _key(caller_id)
    profiles_by_id = {_key(_get(p, 'id')): p for p in profiles}

    participants_by_conv: Dict[Any, List[Any]] = {}
    my_rows: Dict[Any, Any] = {}
    for p in participants:
        conv_id = _key(_get(p, 'conversation_id'))
        participants_by_conv.setdefault(conv_id, []).append(p)
        if _key(_get(p, 'user_id')) == caller_id:
            my_rows[conv_id] = p

    messages_by_conv: Dict[Any, List[Any]] = {}
    for m in messages:
        messages_by_conv.setdefault(_key(_get(m, 'conversation_id')), []).append(m)

    summaries = []
    for conv in conversations:
        conv_id = _key(_get(conv, 'id'))
        mine = my_rows.get(conv_id)
        if mine is None:
            continue
        conv_messages = messages_by_conv.get(conv_id, [])
        last_message = max(conv_messages, key=lambda m: as_utc(_get(m, 'created_at')), default=None)
        summaries.append({
            'id': conv_id,
            'type': _get(conv, 'type'),
            'name': _get(conv, 'name'),
            'created_by': _get(conv, 'created_by'),
            'created_at': _get(conv, 'created_at'),
            'updated_at': _get(conv, 'updated_at'),
            'participants': [
                {
                    'id': _get(p, 'id'),
                    'conversation_id': _get(p, 'conversation_id'),
                    'user_id': _get(p, 'user_id'),
                    'joined_at': _get(p, 'joined_at'),
                    'last_read_at': _get(p, 'last_read_at'),
                    'profile': profiles_by_id.get(_key(_get(p, 'user_id'))),
                }
                for p in participants_by_conv.get(conv_id, [])
            ],
            'last_message': last_message,
            'unread_count': unread_count(conv_messages, _get(mine, 'last_read_at')),
        })

    def activity(summary):
        if summary['last_message'] is not None:
            return as_utc(_get(summary['last_message'], 'created_at'))
        return as_utc(summary['created_at'])

    summaries.sort(key=activity, reverse=True)
    return summaries
