# reminder_engine.py — Reminder store, reminder sweep and due-date-approaching scan
import os
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from automation_engine import DispatchReport, execute_rule, insert_ignore, load_rules_for_trigger
from automation_schemas import ConfigError, EventContext, ORIGIN_SCHEDULER, parse_trigger_config
from models import (
    AutomationFiring, NotificationType, Reminder, ReminderType, Task, TriggerType, new_uuid, utcnow,
)
from notification_sink import CHANNELS_BY_REMINDER_TYPE, publish, record_notification, snapshot
from telemetry import get_tracer

logger = logging.getLogger("taskforge.reminders")
tracer = get_tracer("taskforge.reminders")

# Auto-created reminders fire this many hours before the task's due date
DUE_DATE_REMINDER_HOURS = int(os.getenv("DUE_DATE_REMINDER_HOURS", "24"))

REMINDER_PRESETS = {
    "15min": timedelta(minutes=15),
    "1hour": timedelta(hours=1),
    "1day": timedelta(days=1),
}


class DuplicateReminderError(Exception):
    """A reminder already exists for this task, user and time"""


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def remind_at_for_preset(preset: str, due_date: Optional[datetime]) -> Optional[datetime]:
    """Fire time for a preset relative to the due date; None for `custom` or no due date"""
    if due_date is None or preset not in REMINDER_PRESETS:
        return None
    return as_utc(due_date) - REMINDER_PRESETS[preset]


# ============================================================
# REMINDER STORE
# ============================================================

async def create_reminder(
    db: AsyncSession,
    task_id: str,
    user_id: str,
    remind_at: datetime,
    type: str = ReminderType.NOTIFICATION.value,
) -> Reminder:
    remind_at = as_utc(remind_at)
    existing = (await db.execute(
        select(Reminder.id).where(
            Reminder.task_id == task_id,
            Reminder.user_id == user_id,
            Reminder.remind_at == remind_at,
        )
    )).first()
    if existing is not None:
        raise DuplicateReminderError(f"Reminder already exists for task {task_id} at {remind_at.isoformat()}")

    reminder = Reminder(
        id=new_uuid(),
        task_id=task_id,
        user_id=user_id,
        remind_at=remind_at,
        type=ReminderType(type).value,
        sent=False,
        created_at=utcnow(),
    )
    db.add(reminder)
    try:
        await db.flush()
    except IntegrityError as e:
        # A concurrent insert won the race past the check above
        raise DuplicateReminderError(
            f"Reminder already exists for task {task_id} at {remind_at.isoformat()}"
        ) from e
    return reminder


async def auto_create_due_date_reminder(
    db: AsyncSession,
    task_id: str,
    user_id: str,
    due_date: datetime,
    now: Optional[datetime] = None,
) -> Optional[Reminder]:
    """Schedule a reminder DUE_DATE_REMINDER_HOURS before the due date.

    Skipped when that moment has already passed or the user already has an
    unsent reminder on the task.
    """
    remind_at = as_utc(due_date) - timedelta(hours=DUE_DATE_REMINDER_HOURS)
    if remind_at <= as_utc(now or utcnow()):
        return None

    pending = (await db.execute(
        select(Reminder.id).where(
            Reminder.task_id == task_id,
            Reminder.user_id == user_id,
            Reminder.sent.is_(False),
        )
    )).first()
    if pending is not None:
        return None

    return await create_reminder(db, task_id, user_id, remind_at)


async def get_reminder(db: AsyncSession, reminder_id: str) -> Optional[Reminder]:
    return await db.get(Reminder, reminder_id)


async def delete_reminder(db: AsyncSession, reminder_id: str) -> bool:
    result = await db.execute(delete(Reminder).where(Reminder.id == reminder_id))
    return (result.rowcount or 0) > 0


async def list_task_reminders(db: AsyncSession, task_id: str) -> List[Reminder]:
    result = await db.execute(
        select(Reminder).where(Reminder.task_id == task_id).order_by(Reminder.remind_at.desc())
    )
    return list(result.scalars().all())


async def list_user_pending_reminders(db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> List[Reminder]:
    result = await db.execute(
        select(Reminder).where(
            Reminder.user_id == user_id,
            Reminder.sent.is_(False),
            Reminder.remind_at <= as_utc(now or utcnow()),
        ).order_by(Reminder.remind_at.asc())
    )
    return list(result.scalars().all())


@dataclass(frozen=True)
class DueReminder:
    id: str
    task_id: str
    user_id: str
    type: str


async def load_due_reminders(db: AsyncSession, now: datetime) -> List[DueReminder]:
    result = await db.execute(
        select(Reminder.id, Reminder.task_id, Reminder.user_id, Reminder.type)
        .where(Reminder.sent.is_(False), Reminder.remind_at <= as_utc(now))
        .order_by(Reminder.remind_at.asc())
    )
    return [DueReminder(*row) for row in result.all()]


async def claim_reminder(db: AsyncSession, reminder_id: str) -> bool:
    """Flip sent false→true. Only one concurrent caller sees True."""
    result = await db.execute(
        update(Reminder)
        .where(Reminder.id == reminder_id, Reminder.sent.is_(False))
        .values(sent=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ============================================================
# SWEEP
# ============================================================

def reminder_text(task: Task):
    title = task.title or "Untitled Task"
    due = as_utc(task.due_date)
    due_str = due.strftime("%Y-%m-%d") if due else "No due date"
    return f"Reminder: {title}", f'Task "{title}" is due on {due_str}'


async def sweep(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Notify every due, unsent reminder once. Returns how many were notified.

    Each reminder is claimed and notified in its own transaction. A reminder
    whose task is gone is marked sent and not counted.
    """
    now = as_utc(now or utcnow())
    sent_count = 0
    pushes = defaultdict(list)

    with tracer.start_as_current_span("reminder.sweep") as span:
        due = await load_due_reminders(db, now)
        span.set_attribute("reminder.due", len(due))

        for reminder in due:
            try:
                if not await claim_reminder(db, reminder.id):
                    continue
                task = (await db.execute(
                    select(Task).where(Task.id == reminder.task_id).execution_options(populate_existing=True)
                )).scalar_one_or_none()
                if task is None:
                    await db.commit()
                    logger.warning(f"Reminder {reminder.id} references missing task {reminder.task_id}; marked sent")
                    continue

                title, message = reminder_text(task)
                notif = record_notification(
                    db,
                    user_id=reminder.user_id,
                    type=NotificationType.TASK_REMINDER.value,
                    title=title,
                    message=message,
                    entity_type="task",
                    entity_id=reminder.task_id,
                    channels=CHANNELS_BY_REMINDER_TYPE.get(reminder.type, ["in-app"]),
                )
                workspace_id = task.workspace_id
                await db.commit()
            except Exception:
                await db.rollback()
                logger.exception(f"Error processing reminder {reminder.id}")
                continue

            sent_count += 1
            pushes[workspace_id].append(snapshot(notif))

        span.set_attribute("reminder.sent", sent_count)

    for workspace_id, items in pushes.items():
        await publish(workspace_id, items)

    if due:
        logger.info(f"Reminder sweep: {sent_count}/{len(due)} due reminder(s) notified")
    return sent_count


async def sweep_due_date_automations(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Fire due_date_approaching rules once per task per due date.

    A task is approaching when now < due_date <= now + hours_before. The
    (rule, task, due_date) firing is claimed in the same transaction as the
    action, so re-running the scan never re-fires a handled window, and
    moving the due date re-arms the rule.
    """
    now = as_utc(now or utcnow())
    fired = 0

    with tracer.start_as_current_span("automation.due_date_scan"):
        rules = await load_rules_for_trigger(db, TriggerType.DUE_DATE_APPROACHING)
        for rule in rules:
            try:
                config = parse_trigger_config(rule.trigger_type, rule.trigger_config)
            except ConfigError as e:
                logger.warning(f"Automation {rule.id} ({rule.name}) skipped: {e}")
                continue

            horizon = now + timedelta(hours=config.hours_before)
            rows = (await db.execute(
                select(Task.id, Task.workspace_id, Task.due_date).where(
                    Task.workspace_id == rule.workspace_id,
                    Task.due_date.isnot(None),
                    Task.due_date > now,
                    Task.due_date <= horizon,
                )
            )).all()

            report = DispatchReport(TriggerType.DUE_DATE_APPROACHING.value)
            for task_id, workspace_id, due_date in rows:
                ctx = EventContext(
                    task_id=task_id,
                    workspace_id=workspace_id,
                    origin=ORIGIN_SCHEDULER,
                    extra={"due_date": as_utc(due_date).isoformat()},
                )

                async def claim(rule_id=rule.id, task_id=task_id, due_date=due_date):
                    return await insert_ignore(
                        db, AutomationFiring,
                        automation_id=rule_id, task_id=task_id, due_date=due_date, fired_at=now,
                    )

                if await execute_rule(db, rule, ctx, report, claim=claim) is not None:
                    fired += 1

            if report.notifications:
                await publish(rule.workspace_id, report.notifications)

    if fired:
        logger.info(f"Due-date scan: {fired} automation firing(s)")
    return fired
