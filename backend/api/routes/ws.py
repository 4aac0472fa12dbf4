"""WebSocket endpoint for real-time run updates."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging
import json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/events")
async def websocket_endpoint(websocket: WebSocket):
    """
    Stream every engine event to the client.

    Server pushes ``{"event": name, "data": payload}`` for:
    - run-start: {run}
    - run-end: {runId, workflowId, status, duration, error}
    - run-queued: {workflowId, queueLength}
    - step-update: {runId, stepId, stepType, status, output, attempt?}
    - agent-message: {runId, stepId, message}
    - notify-desktop: {title, message, type}
    - workflow-log: {runId, stepId, level, message, timestamp}
    """
    manager = websocket.app.state.connections
    await manager.connect(websocket)

    try:
        while True:
            # Receive and handle client messages (keepalive pings)
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON WebSocket message")
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
