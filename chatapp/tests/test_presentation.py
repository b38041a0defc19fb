from datetime import datetime, timedelta, timezone

from chatapp.client.presentation import (
    conversation_title,
    avatar_initial,
    participant_names,
    last_message_preview,
    unread_badge,
    format_relative_time,
    format_message_time,
)

ME = 'me'
NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


def private_chat(other_name='bob'):
    return {
        'type': 'private',
        'participants': [
            {'user_id': ME, 'profile': {'display_name': 'alice'}},
            {'user_id': 'other', 'profile': {'display_name': other_name} if other_name else None},
        ],
    }


def group_chat(name='Team'):
    return {
        'type': 'group',
        'name': name,
        'participants': [
            {'user_id': ME, 'profile': {'display_name': 'alice'}},
            {'user_id': 'other', 'profile': {'display_name': 'bob'}},
        ],
    }


def test_titles():
    assert conversation_title(private_chat(), ME) == 'bob'
    assert conversation_title(private_chat(None), ME) == 'Unknown User'
    assert conversation_title(group_chat(), ME) == 'Team'
    assert conversation_title(group_chat(None), ME) == 'Group Chat'


def test_avatar_initial():
    assert avatar_initial(private_chat(), ME) == 'B'
    assert avatar_initial(private_chat(None), ME) == 'U'
    assert avatar_initial(group_chat(), ME) is None


def test_participant_names_for_groups_only():
    assert participant_names(group_chat()) == 'alice, bob'
    assert participant_names(private_chat()) is None


def test_preview_and_badge():
    assert last_message_preview({'last_message': None}) == 'No messages yet'
    assert last_message_preview({'last_message': {'content': 'hey'}}) == 'hey'
    assert unread_badge({'unread_count': 0}) is None
    assert unread_badge({'unread_count': 3}) == '3'


def test_relative_time_buckets():
    assert format_relative_time(NOW - timedelta(seconds=20), now=NOW) == 'Just now'
    assert format_relative_time(NOW - timedelta(minutes=5), now=NOW) == '5m ago'
    assert format_relative_time(NOW - timedelta(hours=3), now=NOW) == '3h ago'
    assert format_relative_time(NOW - timedelta(days=2), now=NOW) == '2d ago'
    assert format_relative_time(NOW - timedelta(days=30), now=NOW) == '2026-02-08'


def test_relative_time_accepts_json_strings():
    assert format_relative_time('2026-03-10T15:00:00', now=NOW) == '30m ago'


def test_message_time():
    assert format_message_time('2026-03-10T09:05:00Z') == '09:05'
