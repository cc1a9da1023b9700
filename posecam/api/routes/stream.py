from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from posecam.api.schemas.models import FrameSchema
from posecam.api.services.engine import CameraEngine
from posecam.api.services.state import get_engine

router = APIRouter()

logger = logging.getLogger(__name__)


def mjpeg_chunk(frame: bytes, frame_id: int | None = None) -> bytes:
    """Wrap one JPEG in a multipart/x-mixed-replace part."""

    headers = b"--frame\r\n" b"Content-Type: image/jpeg\r\n"
    if frame_id is not None:
        headers += f"X-Frame-Id: {frame_id}\r\n".encode("ascii")
    headers += f"Content-Length: {len(frame)}\r\n".encode("ascii")
    headers += b"\r\n"
    return headers + frame + b"\r\n"


async def mjpeg_frames() -> AsyncIterator[bytes]:
    """Yield every newly rendered overlay frame, following engine restarts."""

    last_engine: CameraEngine | None = None
    last_sent_id: int | None = None
    while True:
        engine = await asyncio.to_thread(get_engine)
        if engine is not last_engine:
            last_engine = engine
            last_sent_id = None

        frame, frame_id, _info, _tracked = engine.latest_stream_packet()
        if frame is not None and frame_id != last_sent_id:
            yield mjpeg_chunk(frame, frame_id)
            last_sent_id = frame_id
        await asyncio.sleep(0.02)


@router.get("/stream/video")
async def stream_video():
    return StreamingResponse(
        mjpeg_frames(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
            # Helps avoid proxy buffering (e.g., nginx) in front of the stream.
            "X-Accel-Buffering": "no",
        },
    )


def _is_closed_send_error(exc: BaseException) -> bool:
    # Uvicorn raises this when an ASGI websocket.send happens after close.
    if not isinstance(exc, RuntimeError):
        return False
    msg = str(exc)
    return "Unexpected ASGI message 'websocket.send'" in msg or "response already completed" in msg


async def _poll_and_handle_ping(ws: WebSocket) -> None:
    # Only real Starlette WebSocket instances have receive_json().
    if not hasattr(ws, "receive_json"):
        return
    try:
        msg = await asyncio.wait_for(ws.receive_json(), timeout=0.001)
    except asyncio.TimeoutError:
        return
    except WebSocketDisconnect:
        raise
    except Exception:
        return

    if not isinstance(msg, dict) or msg.get("type") != "ping":
        return
    try:
        await ws.send_json({"type": "pong", "t": msg.get("t"), "server_time": time.time()})
    except Exception as e:
        if _is_closed_send_error(e) or isinstance(e, WebSocketDisconnect):
            raise WebSocketDisconnect() from e


@router.websocket("/stream/metadata")
async def stream_metadata(ws: WebSocket):
    """Push the tracked recognitions of every new render as JSON."""

    await ws.accept()
    last_engine: CameraEngine | None = None
    last_id: int | None = None
    try:
        while True:
            await _poll_and_handle_ping(ws)
            engine = await asyncio.to_thread(get_engine)
            if engine is not last_engine:
                last_engine = engine
                last_id = None

            _frame, frame_id, info, tracked = engine.latest_stream_packet()
            if frame_id is not None and frame_id != last_id:
                try:
                    payload = FrameSchema.build(
                        frame_id, info, tracked, stream_fps=engine.stream_fps()
                    ).model_dump(mode="json")
                    try:
                        await ws.send_json(payload)
                    except Exception as e:
                        if _is_closed_send_error(e) or isinstance(e, WebSocketDisconnect):
                            return
                        raise
                    last_id = frame_id
                except Exception:
                    # Keep the websocket alive even if one frame fails serialization.
                    logger.exception("Failed to send metadata frame")
                    await asyncio.sleep(0.05)

            await asyncio.sleep(0.02)
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Metadata websocket crashed")
        try:
            await ws.close(code=1011)
        except Exception:
            logger.debug("Websocket already closed")
        return
