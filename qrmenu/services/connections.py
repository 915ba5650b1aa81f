from fastapi import WebSocket, WebSocketDisconnect
from qrmenu.schemas.menu import MenuResult, UploadProgress

# Clients currently listening on one of the sockets
class ConnectionManager:
    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def send(self, message: dict):
        for ws in list(self.active_connections):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.disconnect(ws)

    async def broadcast(self, result: MenuResult):
        await self.send({"type": "menu", "data": result.model_dump(mode="json", by_alias=True)})

    async def broadcast_progress(self, progress: UploadProgress):
        await self.send({"type": "upload-progress", "data": progress.model_dump(mode="json")})
