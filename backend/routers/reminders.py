# routers/reminders.py — Task reminders and the reminder check endpoint
import os
import secrets
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Header
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_workspace_member, CurrentUser
from database import get_db_session
from models import Task, ReminderType
from reminder_engine import (
    DuplicateReminderError, as_utc, create_reminder, get_reminder, delete_reminder,
    list_task_reminders, remind_at_for_preset, sweep,
)

router = APIRouter(prefix="/api/v1", tags=["Reminders"])

CRON_API_KEY = os.getenv("CRON_API_KEY", "")


# --- Schemas ---

class ReminderCreate(BaseModel):
    remind_at: Optional[datetime] = None
    type: ReminderType = ReminderType.NOTIFICATION
    preset: Optional[str] = Field(default=None, pattern=r'^(15min|1hour|1day|custom)$')


class ReminderOut(BaseModel):
    id: str
    task_id: str
    user_id: str
    remind_at: str
    type: str
    sent: bool
    created_at: Optional[str] = None


def _reminder_out(r) -> dict:
    return ReminderOut(
        id=r.id, task_id=r.task_id, user_id=r.user_id,
        remind_at=as_utc(r.remind_at).isoformat(),
        type=r.type, sent=bool(r.sent),
        created_at=as_utc(r.created_at).isoformat() if r.created_at else None,
    ).model_dump()


async def _get_task(task_id: str, user: CurrentUser, db: AsyncSession) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise HTTPException(404, "Task not found")
    await require_workspace_member(db, task.workspace_id, user)
    return task


async def verify_cron_key(x_api_key: Optional[str] = Header(default=None)):
    if CRON_API_KEY and not secrets.compare_digest(x_api_key or "", CRON_API_KEY):
        raise HTTPException(401, "Invalid API key")


# ============================================================
# TASK REMINDERS
# ============================================================

@router.get("/tasks/{task_id}/reminders", response_model=List[ReminderOut])
async def list_reminders(
    task_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    await _get_task(task_id, user, db)
    return [_reminder_out(r) for r in await list_task_reminders(db, task_id)]


@router.post("/tasks/{task_id}/reminders", status_code=201)
async def add_reminder(
    task_id: str,
    data: ReminderCreate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    task = await _get_task(task_id, user, db)

    remind_at = None
    if data.preset and data.preset != "custom":
        remind_at = remind_at_for_preset(data.preset, task.due_date)
        if remind_at is None and data.remind_at is None:
            raise HTTPException(400, "Task has no due date to calculate reminder from")
    if remind_at is None:
        remind_at = data.remind_at
    if remind_at is None:
        raise HTTPException(400, "remind_at is required")

    try:
        reminder = await create_reminder(db, task_id, user.id, remind_at, data.type.value)
    except DuplicateReminderError:
        await db.rollback()
        raise HTTPException(409, "A reminder already exists for this time")
    await db.commit()
    return _reminder_out(reminder)


@router.delete("/tasks/{task_id}/reminders/{reminder_id}")
async def remove_reminder(
    task_id: str,
    reminder_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    task = await _get_task(task_id, user, db)
    reminder = await get_reminder(db, reminder_id)
    if not reminder or reminder.task_id != task_id:
        raise HTTPException(404, "Reminder not found")
    if reminder.user_id != user.id and task.creator_id != user.id:
        raise HTTPException(403, "Not authorized to delete this reminder")
    await delete_reminder(db, reminder_id)
    await db.commit()
    return {"status": "deleted"}


# ============================================================
# CHECK (external cron)
# ============================================================

@router.api_route("/reminders/check", methods=["GET", "POST"], dependencies=[Depends(verify_cron_key)])
async def check_reminders(db: AsyncSession = Depends(get_db_session)):
    """Send every due reminder now. Safe to run alongside the built-in scheduler."""
    sent_count = await sweep(db)
    return {
        "sent_count": sent_count,
        "message": "No pending reminders to send" if sent_count == 0
        else f"Sent {sent_count} reminder{'' if sent_count == 1 else 's'}",
    }
