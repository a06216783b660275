# routers/websocket_router.py — Real-time notification channel per workspace
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from auth import AuthService, get_membership
from database import get_db_context
from realtime import manager

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("taskforge.ws")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    workspace_id: str = Query(...),
):
    """Subscribe to a workspace's notification pushes"""
    payload = AuthService.decode_access_token(token)
    if not payload:
        await websocket.close(code=4001, reason="Authentication failed")
        return
    user_id = payload["sub"]

    async with get_db_context() as db:
        membership = await get_membership(db, workspace_id, user_id)
    if membership is None:
        await websocket.close(code=4003, reason="Not a workspace member")
        return

    connection_id = await manager.connect(websocket, workspace_id, user_id)
    try:
        await websocket.send_json({
            "type": "connected",
            "user_id": user_id,
            "workspace_id": workspace_id,
            "online_users": manager.get_online_users(workspace_id),
            "timestamp": _now(),
        })
        await manager.broadcast_to_workspace(workspace_id, {
            "type": "user.online",
            "user_id": user_id,
            "timestamp": _now(),
        }, exclude_user=user_id)

        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(workspace_id, connection_id)

    await manager.broadcast_to_workspace(workspace_id, {
        "type": "user.offline",
        "user_id": user_id,
        "timestamp": _now(),
    })


@router.get("/ws/stats")
async def websocket_stats():
    """Get WebSocket connection statistics"""
    return manager.get_stats()
