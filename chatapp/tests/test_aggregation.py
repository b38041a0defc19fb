import uuid
from datetime import datetime, timedelta, timezone

from chatapp.aggregation import as_utc, unread_count, summarize_conversations

ME = uuid.uuid4()
YOU = uuid.uuid4()
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def conv(created_at, type_='private', name=None):
    return {'id': uuid.uuid4(), 'type': type_, 'name': name, 'created_by': ME,
            'created_at': created_at, 'updated_at': created_at}


def part(conversation, user_id, last_read_at=None):
    return {'id': uuid.uuid4(), 'conversation_id': conversation['id'], 'user_id': user_id,
            'joined_at': conversation['created_at'], 'last_read_at': last_read_at}


def msg(conversation, created_at, content='hi', sender=YOU):
    return {'id': uuid.uuid4(), 'conversation_id': conversation['id'], 'sender_id': sender,
            'content': content, 'created_at': created_at, 'updated_at': created_at}


PROFILES = [
    {'id': ME, 'display_name': 'Me'},
    {'id': YOU, 'display_name': 'You'},
]


def test_unread_counts_everything_without_marker():
    c = conv(T0)
    messages = [msg(c, T0 + timedelta(minutes=i)) for i in range(3)]
    assert unread_count(messages, None) == 3


def test_unread_counts_only_newer_than_marker():
    c = conv(T0)
    messages = [msg(c, T0 + timedelta(minutes=i)) for i in range(3)]
    assert unread_count(messages, T0 + timedelta(minutes=1)) == 1
    assert unread_count(messages, T0 + timedelta(minutes=5)) == 0


def test_naive_and_aware_timestamps_compare_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive) == T0
    assert as_utc('2026-01-01T12:00:00Z') == T0
    assert as_utc('2026-01-01T14:00:00+02:00') == T0
    c = conv(T0)
    assert unread_count([msg(c, datetime(2026, 1, 1, 12, 5))], T0) == 1


def test_summary_shape():
    c = conv(T0)
    first = msg(c, T0 + timedelta(minutes=1), 'first')
    last = msg(c, T0 + timedelta(minutes=2), 'last')
    summaries = summarize_conversations(ME, [c], [part(c, ME), part(c, YOU)], PROFILES, [last, first])
    assert len(summaries) == 1
    s = summaries[0]
    assert s['id'] == c['id']
    assert s['last_message']['content'] == 'last'
    assert s['unread_count'] == 2
    names = {p['profile']['display_name'] for p in s['participants']}
    assert names == {'Me', 'You'}


def test_zero_messages():
    c = conv(T0)
    s = summarize_conversations(ME, [c], [part(c, ME)], PROFILES, [])[0]
    assert s['last_message'] is None
    assert s['unread_count'] == 0


def test_conversations_without_my_row_are_skipped():
    c = conv(T0)
    assert summarize_conversations(ME, [c], [part(c, YOU)], PROFILES, []) == []


def test_sorted_by_last_message_then_creation():
    old_busy = conv(T0)
    new_quiet = conv(T0 + timedelta(hours=1))
    newest_quiet = conv(T0 + timedelta(hours=3))
    conversations = [old_busy, new_quiet, newest_quiet]
    participants = [part(c, ME) for c in conversations]
    messages = [msg(old_busy, T0 + timedelta(hours=2))]
    order = [s['id'] for s in summarize_conversations(ME, conversations, participants, PROFILES, messages)]
    assert order == [newest_quiet['id'], old_busy['id'], new_quiet['id']]


def test_string_ids_from_json_rows():
    c = conv(T0)
    as_json = {**c, 'id': str(c['id'])}
    p = {**part(c, ME), 'conversation_id': str(c['id']), 'user_id': str(ME)}
    s = summarize_conversations(str(ME), [as_json], [p], PROFILES, [])
    assert s[0]['id'] == c['id']
