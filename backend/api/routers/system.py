import asyncio
import logging
from datetime import datetime
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from api.deps import get_services, get_session_user
from core.events import ALL_EVENT_NAMES, EntityChanged
from core.services import Services
from core.sync import DataSync, create_sync

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@router.get("/api/statistics")
async def get_statistics(
    services: Services = Depends(get_services),
    _user=Depends(get_session_user),
):
    """Dashboard counters across every collection"""
    try:
        return await services.data.get_statistics()

    except Exception as e:
        logger.error(f"Error getting statistics: {e}")
        raise HTTPException(status_code=500, detail=str(e))


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Forward queued payloads until the client goes away.

    Client messages are ignored; receiving only watches for the disconnect,
    which ends the task group and the sender with it.
    """

    async def sender(scope: anyio.CancelScope):
        try:
            while True:
                await websocket.send_json(await queue.get())
        except WebSocketDisconnect:
            scope.cancel()
        except Exception as e:
            logger.error(f"[WebSocket] Failed to send update: {e}")
            scope.cancel()

    async with anyio.create_task_group() as tg:
        tg.start_soon(sender, tg.cancel_scope)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
        tg.cancel_scope.cancel()


@router.websocket("/ws/updates")
async def updates_feed(websocket: WebSocket):
    """Push every entity-change event to the connected dashboard"""
    services: Services = websocket.app.state.services
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(event: EntityChanged):
        # Publishers may run on another loop (e.g. under a threaded test client)
        loop.call_soon_threadsafe(queue.put_nowait, event.to_dict())

    for name in ALL_EVENT_NAMES:
        services.bus.subscribe(name, forward)
    await websocket.send_json({"type": "welcome", "message": "connected"})

    try:
        await _pump(websocket, queue)
    except WebSocketDisconnect:
        pass
    finally:
        for name in ALL_EVENT_NAMES:
            services.bus.unsubscribe(name, forward)
        logger.debug("[Updates] Client disconnected")


@router.websocket("/ws/sync/{data_key}")
async def data_sync_feed(
    websocket: WebSocket,
    data_key: str,
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    user_id: Optional[str] = None,
):
    """Keep one dataset fresh for a view: send it now and after every related change"""
    services: Services = websocket.app.state.services
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_refresh(binding: DataSync):
        loop.call_soon_threadsafe(queue.put_nowait, binding.snapshot())

    binding = create_sync(
        services.data,
        data_key,
        on_refresh=on_refresh,
        patient_id=patient_id,
        doctor_id=doctor_id,
        user_id=user_id,
    )
    if binding is None:
        await websocket.close(code=4004)
        return

    await websocket.accept()
    await binding.mount()

    try:
        await _pump(websocket, queue)
    except WebSocketDisconnect:
        pass
    finally:
        binding.unmount()
