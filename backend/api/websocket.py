"""
WebSocket endpoint for live classification round events.

Clients connect to /ws/jobs/{job_id} and receive a JSON event for every round
the orchestrator completes, then a final event when the run ends.

Event format:
    {"event": "connected", "job_id": "...", "status": "in_progress", "active": true}
    {"event": "round_complete", "job_id": "...", "round": 3, "agent": "classifier",
     "action": "classify", "confidence": 62, "status": "in_progress", "error": null}
    {"event": "run_finished", "job_id": "...", "status": "completed", ...}
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.job_registry import job_registry

logger = logging.getLogger(__name__)

ws_router = APIRouter()

POLL_INTERVAL_SECONDS = 0.5


@ws_router.websocket("/ws/jobs/{job_id}")
async def job_websocket(websocket: WebSocket, job_id: str):
    """
    WebSocket endpoint for live job updates.

    On connect: sends the job's registry status and replays past events.
    While running: polls the registry and pushes new round events.
    When the run is no longer active: sends any remaining events and closes.
    """
    await websocket.accept()

    try:
        entry = job_registry.get(job_id)
        if entry is None:
            await websocket.send_text(
                json.dumps({"event": "error", "message": f"No run recorded for job '{job_id}'."})
            )
            return

        await websocket.send_text(
            json.dumps({
                "event": "connected",
                "job_id": job_id,
                "status": entry["status"],
                "active": entry["active"],
            })
        )

        sent = 0
        while True:
            active = job_registry.is_active(job_id)
            for event in job_registry.events_since(job_id, sent):
                await websocket.send_text(json.dumps(event, default=str))
                sent += 1
            if not active:
                break
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    except WebSocketDisconnect:
        logger.debug("WebSocket client for job %s disconnected", job_id)
