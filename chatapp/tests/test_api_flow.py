import uuid

import pytest
from httpx import AsyncClient, ASGITransport

from chatapp.main import app


def client():
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


@pytest.mark.asyncio
async def test_register_login_me_and_logout(db):
    async with client() as ac:
        r = await ac.post('/api/users/register', json={
            'email': 'Alice@Example.com', 'password': 'secret1', 'display_name': 'Alice',
        })
        assert r.status_code == 201, r.text
        assert r.json()['email'] == 'alice@example.com'

        dup = await ac.post('/api/users/register', json={
            'email': 'alice@example.com', 'password': 'secret1', 'display_name': 'Again',
        })
        assert dup.status_code == 409

        bad = await ac.post('/api/users/login', data={'username': 'alice@example.com', 'password': 'nope'})
        assert bad.status_code == 401

        login = await ac.post('/api/users/login', data={'username': 'alice@example.com', 'password': 'secret1'})
        assert login.status_code == 200, login.text
        tokens = login.json()
        headers = {'Authorization': f"Bearer {tokens['access_token']}"}

        me = await ac.get('/api/users/me', headers=headers)
        assert me.status_code == 200
        assert me.json()['status'] == 'online'

        refreshed = await ac.post('/api/users/refresh', json={'refresh_token': tokens['refresh_token']})
        assert refreshed.status_code == 200
        assert refreshed.json()['access_token']

        out = await ac.post('/api/users/logout', json={'refresh_token': tokens['refresh_token']}, headers=headers)
        assert out.status_code == 200
        me = await ac.get('/api/users/me', headers=headers)
        assert me.json()['status'] == 'offline'

        again = await ac.post('/api/users/refresh', json={'refresh_token': tokens['refresh_token']})
        assert again.status_code == 401


@pytest.mark.asyncio
async def test_requires_authentication(db):
    async with client() as ac:
        r = await ac.get('/api/conversations/')
        assert r.status_code == 401
        assert r.headers['www-authenticate'] == 'Bearer'
        assert r.json()['detail'] == 'Not authenticated'
        r = await ac.get('/api/conversations/', headers={'Authorization': 'Bearer garbage'})
        assert r.status_code == 401
        r = await ac.post('/api/users/refresh', json={'refresh_token': 'unknown'})
        assert r.status_code == 401
        assert r.json()['detail'] == 'Invalid refresh token'


@pytest.mark.asyncio
async def test_logout_only_revokes_own_refresh_token(db):
    async with client() as ac:
        tokens = {}
        for email, name in (('alice@example.com', 'Alice'), ('bob@example.com', 'Bob')):
            await ac.post('/api/users/register', json={'email': email, 'password': 'secret1', 'display_name': name})
            login = await ac.post('/api/users/login', data={'username': email, 'password': 'secret1'})
            tokens[name] = login.json()

        bob_headers = {'Authorization': f"Bearer {tokens['Bob']['access_token']}"}
        r = await ac.post('/api/users/logout', json={'refresh_token': tokens['Alice']['refresh_token']},
                          headers=bob_headers)
        assert r.status_code == 200

        still_valid = await ac.post('/api/users/refresh', json={'refresh_token': tokens['Alice']['refresh_token']})
        assert still_valid.status_code == 200


@pytest.mark.asyncio
async def test_profiles_search_and_update(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        await make_user(ac, 'bob@example.com', 'Bob')
        await make_user(ac, 'carol@example.com', 'Carol')

        r = await ac.get('/api/profiles/', headers=ha)
        names = [p['display_name'] for p in r.json()]
        assert names == ['Bob', 'Carol']

        r = await ac.get('/api/profiles/', params={'q': 'car'}, headers=ha)
        assert [p['display_name'] for p in r.json()] == ['Carol']

        r = await ac.patch('/api/profiles/me', json={'display_name': 'Alice A', 'status': 'away'}, headers=ha)
        assert r.status_code == 200, r.text
        assert r.json()['display_name'] == 'Alice A'

        r = await ac.patch('/api/profiles/me', json={'display_name': '   '}, headers=ha)
        assert r.status_code == 422

        r = await ac.get(f"/api/profiles/{uuid.uuid4()}", headers=ha)
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_contacts_are_paired_as_independent_rows(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')

        r = await ac.post('/api/contacts/', json={'contact_id': bob['id']}, headers=ha)
        assert r.status_code == 201, r.text
        assert r.json()['contact_profile']['display_name'] == 'Bob'

        # adding twice is not an error
        again = await ac.post('/api/contacts/', json={'contact_id': bob['id']}, headers=ha)
        assert again.status_code == 201
        assert again.json()['id'] == r.json()['id']

        mine = (await ac.get('/api/contacts/', headers=ha)).json()
        theirs = (await ac.get('/api/contacts/', headers=hb)).json()
        assert [c['contact_id'] for c in mine] == [bob['id']]
        assert [c['contact_id'] for c in theirs] == [alice['id']]
        assert mine[0]['id'] != theirs[0]['id']

        self_add = await ac.post('/api/contacts/', json={'contact_id': alice['id']}, headers=ha)
        assert self_add.status_code == 422

        r = await ac.delete(f"/api/contacts/{bob['id']}", headers=ha)
        assert r.status_code == 200
        assert (await ac.get('/api/contacts/', headers=ha)).json() == []
        assert (await ac.get('/api/contacts/', headers=hb)).json() == []

        r = await ac.delete(f"/api/contacts/{bob['id']}", headers=ha)
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_private_chat_find_or_create(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')

        r = await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)
        assert r.status_code == 201, r.text
        body = r.json()
        assert body['created'] is True
        conv = body['conversation']
        assert conv['type'] == 'private'
        assert {p['user_id'] for p in conv['participants']} == {alice['id'], bob['id']}
        assert {p['conversation_id'] for p in conv['participants']} == {conv['id']}

        again = await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)
        assert again.status_code == 200
        assert again.json()['created'] is False
        assert again.json()['conversation']['id'] == conv['id']

        from_bob = await ac.post('/api/conversations/private', json={'contact_id': alice['id']}, headers=hb)
        assert from_bob.json()['conversation']['id'] == conv['id']

        with_self = await ac.post('/api/conversations/private', json={'contact_id': alice['id']}, headers=ha)
        assert with_self.status_code == 422


@pytest.mark.asyncio
async def test_private_chat_stays_between_two_people(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        carol, hc = await make_user(ac, 'carol@example.com', 'Carol')
        conv = (await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)).json()['conversation']

        r = await ac.post(f"/api/conversations/{conv['id']}/participants", json={'user_id': carol['id']}, headers=ha)
        assert r.status_code == 422
        participants = (await ac.get(f"/api/conversations/{conv['id']}/participants", headers=ha)).json()
        assert {p['user_id'] for p in participants} == {alice['id'], bob['id']}

        reopened = await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)
        assert reopened.status_code == 200
        assert reopened.json()['conversation']['id'] == conv['id']


@pytest.mark.asyncio
async def test_non_participants_see_nothing(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        mallory, hm = await make_user(ac, 'mallory@example.com', 'Mallory')

        conv = (await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)).json()['conversation']
        sent = await ac.post(f"/api/conversations/{conv['id']}/messages", json={'content': 'secret'}, headers=ha)
        assert sent.status_code == 201, sent.text

        assert (await ac.get('/api/conversations/', headers=hm)).json() == []
        assert (await ac.get(f"/api/conversations/{conv['id']}", headers=hm)).status_code == 404
        assert (await ac.get(f"/api/conversations/{conv['id']}/messages", headers=hm)).json() == []
        assert (await ac.get(f"/api/conversations/{conv['id']}/participants", headers=hm)).json() == []

        # posting into a conversation you are not part of is rejected
        r = await ac.post(f"/api/conversations/{conv['id']}/messages", json={'content': 'hi'}, headers=hm)
        assert r.status_code == 403
        assert len((await ac.get(f"/api/conversations/{conv['id']}/messages", headers=ha)).json()) == 1

        # adding yourself to someone else's conversation is rejected too
        r = await ac.post(f"/api/conversations/{conv['id']}/participants", json={'user_id': mallory['id']}, headers=hm)
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_messages_and_unread_counts(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        conv = (await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)).json()['conversation']
        url = f"/api/conversations/{conv['id']}/messages"

        for text in ('one', '  two  '):
            r = await ac.post(url, json={'content': text}, headers=ha)
            assert r.status_code == 201, r.text
        blank = await ac.post(url, json={'content': '   '}, headers=ha)
        assert blank.status_code == 422

        listed = (await ac.get(url, headers=hb)).json()
        assert [m['content'] for m in listed] == ['one', 'two']
        assert listed[0]['sender']['display_name'] == 'Alice'

        summary = (await ac.get('/api/conversations/', headers=hb)).json()[0]
        assert summary['unread_count'] == 2
        assert summary['last_message']['content'] == 'two'

        r = await ac.post(f"/api/conversations/{conv['id']}/read", headers=hb)
        assert r.status_code == 200, r.text
        assert r.json()['last_read_at'] is not None
        assert (await ac.get('/api/conversations/', headers=hb)).json()[0]['unread_count'] == 0

        await ac.post(url, json={'content': 'three'}, headers=ha)
        assert (await ac.get('/api/conversations/', headers=hb)).json()[0]['unread_count'] == 1

        latest = await ac.get(url, params={'limit': 2}, headers=hb)
        assert [m['content'] for m in latest.json()] == ['two', 'three']
        for bad in (-1, 0):
            r = await ac.get(url, params={'limit': bad}, headers=hb)
            assert r.status_code == 422


@pytest.mark.asyncio
async def test_only_sender_edits_or_deletes(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        conv = (await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)).json()['conversation']
        msg = (await ac.post(f"/api/conversations/{conv['id']}/messages", json={'content': 'hi'}, headers=ha)).json()

        assert (await ac.patch(f"/api/messages/{msg['id']}", json={'content': 'hacked'}, headers=hb)).status_code == 403
        assert (await ac.delete(f"/api/messages/{msg['id']}", headers=hb)).status_code == 403

        edited = await ac.patch(f"/api/messages/{msg['id']}", json={'content': 'hello'}, headers=ha)
        assert edited.status_code == 200
        assert edited.json()['content'] == 'hello'

        assert (await ac.delete(f"/api/messages/{msg['id']}", headers=ha)).status_code == 200
        assert (await ac.get(f"/api/conversations/{conv['id']}/messages", headers=hb)).json() == []
        assert (await ac.delete(f"/api/messages/{msg['id']}", headers=ha)).status_code == 404


@pytest.mark.asyncio
async def test_group_lifecycle(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        carol, hc = await make_user(ac, 'carol@example.com', 'Carol')

        r = await ac.post('/api/conversations/group', json={'name': '   ', 'member_ids': [bob['id']]}, headers=ha)
        assert r.status_code == 422
        r = await ac.post('/api/conversations/group', json={'name': 'Team', 'member_ids': []}, headers=ha)
        assert r.status_code == 422
        r = await ac.post('/api/conversations/group', json={'name': 'Team', 'member_ids': [alice['id']]}, headers=ha)
        assert r.status_code == 422

        r = await ac.post('/api/conversations/group', json={'name': ' Team ', 'member_ids': [bob['id'], bob['id']]}, headers=ha)
        assert r.status_code == 201, r.text
        group = r.json()
        assert group['type'] == 'group'
        assert group['name'] == 'Team'
        assert len(group['participants']) == 2

        # only the creator may rename or invite
        assert (await ac.patch(f"/api/conversations/{group['id']}", json={'name': 'Mine'}, headers=hb)).status_code == 403
        r = await ac.post(f"/api/conversations/{group['id']}/participants", json={'user_id': carol['id']}, headers=hb)
        assert r.status_code == 403

        r = await ac.patch(f"/api/conversations/{group['id']}", json={'name': 'Renamed'}, headers=ha)
        assert r.json()['name'] == 'Renamed'
        r = await ac.post(f"/api/conversations/{group['id']}/participants", json={'user_id': carol['id']}, headers=ha)
        assert r.status_code == 201, r.text
        dup = await ac.post(f"/api/conversations/{group['id']}/participants", json={'user_id': carol['id']}, headers=ha)
        assert dup.status_code == 409

        assert len((await ac.get(f"/api/conversations/{group['id']}/participants", headers=hc)).json()) == 3

        r = await ac.delete(f"/api/conversations/{group['id']}/participants/me", headers=hb)
        assert r.status_code == 200
        assert (await ac.get('/api/conversations/', headers=hb)).json() == []
        remaining = (await ac.get(f"/api/conversations/{group['id']}/participants", headers=ha)).json()
        assert {p['user_id'] for p in remaining} == {alice['id'], carol['id']}

        r = await ac.delete(f"/api/conversations/{group['id']}/participants/me", headers=hb)
        assert r.status_code == 404


@pytest.mark.asyncio
async def test_conversation_list_is_newest_first(db, make_user):
    async with client() as ac:
        alice, ha = await make_user(ac, 'alice@example.com', 'Alice')
        bob, hb = await make_user(ac, 'bob@example.com', 'Bob')
        carol, hc = await make_user(ac, 'carol@example.com', 'Carol')

        with_bob = (await ac.post('/api/conversations/private', json={'contact_id': bob['id']}, headers=ha)).json()['conversation']
        with_carol = (await ac.post('/api/conversations/private', json={'contact_id': carol['id']}, headers=ha)).json()['conversation']
        order = [c['id'] for c in (await ac.get('/api/conversations/', headers=ha)).json()]
        assert order == [with_carol['id'], with_bob['id']]

        await ac.post(f"/api/conversations/{with_bob['id']}/messages", json={'content': 'ping'}, headers=hb)
        order = [c['id'] for c in (await ac.get('/api/conversations/', headers=ha)).json()]
        assert order == [with_bob['id'], with_carol['id']]
