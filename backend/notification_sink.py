# notification_sink.py — Append-only notification store with best-effort real-time fan-out
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from models import Notification, ReminderType, new_uuid, utcnow
from realtime import manager

logger = logging.getLogger("taskforge.notifications")

CHANNELS_BY_REMINDER_TYPE = {
    ReminderType.NOTIFICATION.value: ["in-app"],
    ReminderType.EMAIL.value: ["email"],
    ReminderType.BOTH.value: ["in-app", "email"],
}


def record_notification(
    db: AsyncSession,
    *,
    user_id: str,
    type: str,
    title: str,
    message: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    channels: Optional[List[str]] = None,
) -> Notification:
    """Stage a notification insert in the caller's unit of work.

    The caller commits; nothing is pushed to clients until `publish` is
    called after that commit.
    """
    notif = Notification(
        id=new_uuid(),
        user_id=user_id,
        type=type,
        title=title[:255],
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
        read=False,
        channels=channels or ["in-app"],
        created_at=utcnow(),
    )
    db.add(notif)
    return notif


@dataclass(frozen=True)
class PendingPush:
    """Committed notification detached from the session, ready for fan-out"""
    notification_id: str
    user_id: str
    channels: Tuple[str, ...]
    payload: Dict[str, Any]


def snapshot(n: Notification) -> PendingPush:
    """Capture a notification right after commit, before any rollback can expire it"""
    return PendingPush(
        notification_id=n.id,
        user_id=n.user_id,
        channels=tuple(n.channels or ["in-app"]),
        payload={
            "type": "notification",
            "data": {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "entity_type": n.entity_type,
                "entity_id": n.entity_id,
                "created_at": n.created_at.isoformat() if n.created_at else None,
            },
        },
    )


async def publish(workspace_id: str, pushes: Iterable[PendingPush]) -> int:
    """Push committed notifications to connected clients. Never raises."""
    delivered = 0
    for push in pushes:
        if "in-app" not in push.channels:
            continue
        try:
            delivered += await manager.send_to_user(workspace_id, push.user_id, push.payload)
        except Exception as e:
            logger.warning(f"Real-time push failed for notification {push.notification_id}: {e}")
    return delivered
