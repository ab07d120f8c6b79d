from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from poselink.api.schemas.models import TickSchema
from poselink.api.services.engine import BridgeEngine
from poselink.api.services.state import get_engine

router = APIRouter()

logger = logging.getLogger(__name__)


def _is_closed_send_error(exc: BaseException) -> bool:
    # Uvicorn raises this when an ASGI websocket.send happens after close.
    if not isinstance(exc, RuntimeError):
        return False
    msg = str(exc)
    return "Unexpected ASGI message 'websocket.send'" in msg or "response already completed" in msg


@router.websocket("/stream/poses")
async def stream_poses(ws: WebSocket):
    await ws.accept()
    engine: BridgeEngine = await asyncio.to_thread(get_engine)

    async def _poll_and_handle_ping() -> None:
        # Called from the send loop so send() never runs concurrently.
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
        await ws.send_json({"type": "pong", "t": msg.get("t"), "server_time": time.time()})

    try:
        async for summary in engine.summary_stream():
            await _poll_and_handle_ping()
            try:
                await ws.send_json(TickSchema(**asdict(summary)).model_dump())
            except WebSocketDisconnect:
                return
            except RuntimeError as e:
                if _is_closed_send_error(e):
                    return
                raise
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Pose websocket crashed")
        try:
            await ws.close(code=1011)
        except RuntimeError:
            pass
