from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from adscraper.jobs import EVENT_ERROR, Emit, JobOptions, SessionRegistry
from api.schemas import ChannelFrame, StartScrapingData
from core.errors import ScraperError

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_CONNECTED = "connected"


@router.websocket("/ws")
async def scraping_channel(websocket: WebSocket) -> None:
    """Bidirectional job channel: one connection is one session."""

    await websocket.accept()
    registry: SessionRegistry = websocket.app.state.sessions
    session_id = uuid4().hex
    emit = _emitter(websocket, session_id)
    logger.info("session_connected session=%s", session_id)
    await emit(EVENT_CONNECTED, {"sessionId": session_id})
    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = ChannelFrame.model_validate(json.loads(text))
            except (ValueError, ValidationError):
                await emit(EVENT_ERROR, {"message": "Malformed event frame", "code": "invalid_frame"})
                continue
            await _dispatch(registry, session_id, emit, frame)
    except WebSocketDisconnect:
        logger.info("session_disconnected session=%s", session_id)
    finally:
        await registry.discard(session_id)


async def _dispatch(registry: SessionRegistry, session_id: str, emit: Emit, frame: ChannelFrame) -> None:
    if frame.event == "start-scraping":
        await _start(registry, session_id, emit, frame.data)
        return

    controller = registry.get(session_id)
    if frame.event == "pause-scraping":
        if controller is not None:
            await controller.pause()
    elif frame.event == "resume-scraping":
        if controller is not None:
            await controller.resume()
    elif frame.event == "stop-scraping":
        if controller is not None:
            await controller.stop()
    else:
        await emit(EVENT_ERROR, {"message": f"Unknown event '{frame.event}'", "code": "unknown_event"})


async def _start(registry: SessionRegistry, session_id: str, emit: Emit, data: dict[str, Any]) -> None:
    try:
        request = StartScrapingData.model_validate(data)
    except ValidationError:
        await emit(EVENT_ERROR, {"message": "Invalid start-scraping payload", "code": "invalid_request"})
        return
    controller = registry.controller_for(session_id, emit)
    options = JobOptions(
        fetch_details=request.fetch_details,
        details_limit=request.details_limit,
        enable_vision=request.enable_vision,
        vision_limit=request.vision_limit,
        max_results=request.max_results,
        raw_content=request.content,
    )
    try:
        await controller.start(request.url, source=request.source, options=options)
    except ScraperError as exc:
        await emit(EVENT_ERROR, {"message": exc.message, "code": exc.code})


def _emitter(websocket: WebSocket, session_id: str) -> Emit:
    async def emit(event: str, data: dict[str, Any]) -> None:
        if websocket.client_state is not WebSocketState.CONNECTED:
            logger.debug("event_dropped session=%s event=%s", session_id, event)
            return
        try:
            await websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("event_dropped session=%s event=%s", session_id, event)

    return emit
