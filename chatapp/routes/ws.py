from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from ..auth import caller_from_token
from ..realtime import feed
from ..ws_manager import ConnectionManager

router = APIRouter()

manager = ConnectionManager(feed)


@router.websocket('/changes')
async def changes_ws(websocket: WebSocket, token: str = Query(None)):
    caller = caller_from_token(token)
    if caller is None:
        await websocket.close(code=1008)
        return
    channel = await manager.connect(websocket, caller)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await channel.send({'type': 'error', 'detail': 'frames must be valid JSON'})
                continue
            if not isinstance(frame, dict):
                await channel.send({'type': 'error', 'detail': 'frames must be JSON objects'})
                continue
            await channel.handle(frame)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(channel)
