from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from qrmenu.core.security import admin_from_token
from qrmenu.services.connections import ConnectionManager
import asyncio
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws")

async def _listen(websocket: WebSocket, manager: ConnectionManager):
    try:
        while True:
            try:
                # Clients only listen; anything they send is ignored
                await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "ping", "message": "keepalive"})
    except WebSocketDisconnect:
        manager.disconnect(websocket)

@router.websocket("/menu")
async def menu_updates(websocket: WebSocket):
    await websocket.accept()
    manager: ConnectionManager = websocket.app.state.connections
    feed = websocket.app.state.menu_feed
    await manager.connect(websocket)

    if feed.latest is not None:
        await websocket.send_json(
            {"type": "menu", "data": feed.latest.model_dump(mode="json", by_alias=True)}
        )
    await _listen(websocket, manager)

@router.websocket("/uploads")
async def upload_progress(websocket: WebSocket, token: str = ""):
    """Progress of menu uploads, for admins holding an access token."""
    if admin_from_token(token, websocket.app.state.settings) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    manager: ConnectionManager = websocket.app.state.upload_connections
    await manager.connect(websocket)
    await _listen(websocket, manager)
