"""
Client for the chat API.

REST calls go through an httpx AsyncClient; change notifications arrive over
a WebSocket opened with aiohttp. Pass ``transport=httpx.ASGITransport(app)``
to talk to an in-process app.
"""
import asyncio
import inspect
import itertools
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp
import httpx

logger = logging.getLogger(__name__)


class ChatAPIError(Exception):
    def __init__(self, status: int, detail: Any):
        super().__init__(f'{status}: {detail}')
        self.status = status
        self.detail = detail


class ChatClient:
    def __init__(self, base_url: str, transport: httpx.AsyncBaseTransport = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self._http = httpx.AsyncClient(base_url=self.base_url, transport=transport, timeout=timeout)
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop('headers', {})
        if self.access_token:
            headers['Authorization'] = f'Bearer {self.access_token}'
        response = await self._http.request(method, path, headers=headers, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get('detail')
            except ValueError:
                detail = response.text
            logger.warning({'msg': 'api_error', 'method': method, 'path': path, 'status': response.status_code})
            raise ChatAPIError(response.status_code, detail)
        return response.json()

    # auth

    async def sign_up(self, email: str, password: str, display_name: str) -> dict:
        return await self._request('POST', '/api/users/register', json={
            'email': email, 'password': password, 'display_name': display_name,
        })

    async def sign_in(self, email: str, password: str, device_id: str = None) -> dict:
        data = {'username': email, 'password': password}
        if device_id:
            data['device_id'] = device_id
        tokens = await self._request('POST', '/api/users/login', data=data)
        self.access_token = tokens['access_token']
        self.refresh_token = tokens.get('refresh_token')
        return tokens

    async def refresh(self) -> dict:
        tokens = await self._request('POST', '/api/users/refresh', json={'refresh_token': self.refresh_token})
        self.access_token = tokens['access_token']
        return tokens

    async def sign_out(self):
        await self._request('POST', '/api/users/logout', json={'refresh_token': self.refresh_token})
        self.access_token = None
        self.refresh_token = None

    async def me(self) -> dict:
        return await self._request('GET', '/api/users/me')

    # profiles and contacts

    async def list_profiles(self, query: str = None) -> List[dict]:
        params = {'q': query} if query else None
        return await self._request('GET', '/api/profiles/', params=params)

    async def update_profile(self, **fields) -> dict:
        return await self._request('PATCH', '/api/profiles/me', json=fields)

    async def list_contacts(self) -> List[dict]:
        return await self._request('GET', '/api/contacts/')

    async def add_contact(self, contact_id: str) -> dict:
        return await self._request('POST', '/api/contacts/', json={'contact_id': str(contact_id)})

    async def remove_contact(self, contact_id: str):
        await self._request('DELETE', f'/api/contacts/{contact_id}')

    # conversations

    async def list_conversations(self) -> List[dict]:
        return await self._request('GET', '/api/conversations/')

    async def get_conversation(self, conversation_id: str) -> dict:
        return await self._request('GET', f'/api/conversations/{conversation_id}')

    async def open_private_chat(self, contact_id: str) -> dict:
        return await self._request('POST', '/api/conversations/private', json={'contact_id': str(contact_id)})

    async def create_group_chat(self, name: str, member_ids: List[str]) -> dict:
        return await self._request('POST', '/api/conversations/group', json={
            'name': name, 'member_ids': [str(m) for m in member_ids],
        })

    async def rename_group(self, conversation_id: str, name: str) -> dict:
        return await self._request('PATCH', f'/api/conversations/{conversation_id}', json={'name': name})

    async def list_participants(self, conversation_id: str) -> List[dict]:
        return await self._request('GET', f'/api/conversations/{conversation_id}/participants')

    async def add_participant(self, conversation_id: str, user_id: str) -> dict:
        return await self._request('POST', f'/api/conversations/{conversation_id}/participants',
                                   json={'user_id': str(user_id)})

    async def leave_conversation(self, conversation_id: str):
        await self._request('DELETE', f'/api/conversations/{conversation_id}/participants/me')

    async def mark_read(self, conversation_id: str) -> dict:
        return await self._request('POST', f'/api/conversations/{conversation_id}/read')

    # messages

    async def list_messages(self, conversation_id: str) -> List[dict]:
        return await self._request('GET', f'/api/conversations/{conversation_id}/messages')

    async def send_message(self, conversation_id: str, content: str) -> dict:
        return await self._request('POST', f'/api/conversations/{conversation_id}/messages',
                                   json={'content': content})

    async def edit_message(self, message_id: str, content: str) -> dict:
        return await self._request('PATCH', f'/api/messages/{message_id}', json={'content': content})

    async def delete_message(self, message_id: str):
        await self._request('DELETE', f'/api/messages/{message_id}')

    # realtime

    def changes_url(self) -> str:
        base = self.base_url.replace('https://', 'wss://', 1).replace('http://', 'ws://', 1)
        return f"{base}/api/ws/changes?{urlencode({'token': self.access_token or ''})}"

    async def realtime(self) -> 'RealtimeChannel':
        channel = RealtimeChannel(self.changes_url())
        await channel.connect()
        return channel


Handler = Callable[[dict], Any]


class RealtimeChannel:
    """subscribe(table, event, filter) -> ref; handlers get the change payload."""

    def __init__(self, url: str):
        self.url = url
        self._handlers: Dict[str, Handler] = {}
        self._refs = itertools.count(1)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    async def connect(self):
        self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url, heartbeat=30)
        self._reader = asyncio.create_task(self._read())

    async def subscribe(self, table: str, callback: Handler, event: str = '*', filter: str = None) -> str:
        ref = str(next(self._refs))
        self._handlers[ref] = callback
        await self._ws.send_json({'action': 'subscribe', 'ref': ref, 'table': table, 'event': event, 'filter': filter})
        return ref

    async def unsubscribe(self, ref: str):
        if self._handlers.pop(ref, None) is not None and self._ws is not None and not self._ws.closed:
            await self._ws.send_json({'action': 'unsubscribe', 'ref': ref})

    async def _read(self):
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.dispatch(msg.json())
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def dispatch(self, frame: dict):
        kind = frame.get('type')
        if kind == 'error':
            logger.warning({'msg': 'realtime_error', 'ref': frame.get('ref'), 'detail': frame.get('detail')})
            return
        if kind != 'change':
            return
        handler = self._handlers.get(str(frame.get('ref')))
        if handler is None:
            return
        result = handler(frame['payload'])
        if inspect.isawaitable(result):
            await result

    async def close(self):
        self._handlers.clear()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()
