"""WebSocket endpoint for door lock devices."""
import logging

from fastapi import APIRouter, WebSocket

from ..services.device_session import open_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["device-socket"])


async def serve_device(websocket: WebSocket):
    """Run one device connection from accept to close.

    The first text frame is the session token. An unknown token leaves the
    connection open but inert: later frames are read and dropped, and nothing
    is written to the store when it closes.
    """
    await websocket.accept()
    token = None
    session = None

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            frame = message.get("text")
            if frame is None:
                # Binary frames are not part of the protocol
                continue

            if token is None:
                token = frame
                try:
                    session = await open_session(token, websocket)
                except Exception as e:
                    logger.error(f"Device authentication failed: {e}")
                    await websocket.close(code=1011)
                    break
                continue

            if session is None:
                logger.debug("Dropping frame from unauthenticated device connection")
                continue

            await session.handle_frame(frame)
    finally:
        if session is not None:
            await session.close()


@router.websocket("/ws")
async def device_ws(websocket: WebSocket):
    await serve_device(websocket)


@router.websocket("/ws/device")
async def device_ws_alias(websocket: WebSocket):
    await serve_device(websocket)
