"""Display helpers for the conversation list and chat window."""
from datetime import datetime, timezone
from typing import Optional

from ..aggregation import as_utc

GROUP_FALLBACK = 'Group Chat'
UNKNOWN_USER = 'Unknown User'
NO_MESSAGES = 'No messages yet'


def _other_participant(conversation: dict, current_user_id) -> Optional[dict]:
    for p in conversation.get('participants', []):
        if str(p.get('user_id')) != str(current_user_id):
            return p
    return None


def _display_name(participant: Optional[dict]) -> Optional[str]:
    if not participant or not participant.get('profile'):
        return None
    return participant['profile'].get('display_name')


def conversation_title(conversation: dict, current_user_id) -> str:
    if conversation.get('type') == 'group':
        return conversation.get('name') or GROUP_FALLBACK
    return _display_name(_other_participant(conversation, current_user_id)) or UNKNOWN_USER


def avatar_initial(conversation: dict, current_user_id) -> Optional[str]:
    """First letter for private chats; None means the group icon."""
    if conversation.get('type') == 'group':
        return None
    name = _display_name(_other_participant(conversation, current_user_id)) or 'U'
    return name[0].upper()


def participant_names(conversation: dict) -> Optional[str]:
    if conversation.get('type') == 'private':
        return None
    return ', '.join(_display_name(p) or UNKNOWN_USER for p in conversation.get('participants', []))


def last_message_preview(conversation: dict) -> str:
    message = conversation.get('last_message')
    if not message:
        return NO_MESSAGES
    return message.get('content') or NO_MESSAGES


def unread_badge(conversation: dict) -> Optional[str]:
    count = conversation.get('unread_count') or 0
    return str(count) if count > 0 else None


def format_relative_time(timestamp, now: datetime = None) -> str:
    moment = as_utc(timestamp)
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    seconds = (now - moment).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)
    if minutes < 1:
        return 'Just now'
    if minutes < 60:
        return f'{minutes}m ago'
    if hours < 24:
        return f'{hours}h ago'
    if days < 7:
        return f'{days}d ago'
    return moment.date().isoformat()


def format_message_time(timestamp) -> str:
    return as_utc(timestamp).strftime('%H:%M')
