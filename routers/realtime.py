import secrets

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(tags=["realtime"])


class WebSocketChannel:
    """Adapts a Starlette WebSocket to the registry's Channel protocol."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.channel_id = secrets.token_hex(8)

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, message: dict) -> None:
        await self.websocket.send_json(message)


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    """
    One channel per socket. Inbound frames are handled off the event loop
    (they touch the database); everything outbound goes through the
    dispatcher.
    """
    gateway = websocket.app.state.gateway

    await websocket.accept()
    channel = WebSocketChannel(websocket)
    gateway.connect(channel)

    try:
        while True:
            raw = await websocket.receive_text()
            await run_in_threadpool(gateway.handle_message, channel.channel_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(channel.channel_id)
