# routers/tasks.py — Task mutation paths that feed the automation engine
import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_membership, require_workspace_member, CurrentUser
from automation_engine import run_automations
from automation_schemas import EventContext
from database import get_db_session
from models import (
    Space, Task, TaskAssignee, TaskLabel, TaskList,
    NotificationType, TriggerType, new_uuid,
)
from notification_sink import publish, record_notification, snapshot
from reminder_engine import as_utc, auto_create_due_date_reminder

router = APIRouter(prefix="/api/v1", tags=["Tasks"])
logger = logging.getLogger("taskforge.tasks")


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, min_length=1, max_length=50)
    priority: str = Field(default="none", pattern=r'^(urgent|high|medium|low|none)$')
    due_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, min_length=1, max_length=50)
    priority: Optional[str] = Field(default=None, pattern=r'^(urgent|high|medium|low|none)$')
    due_date: Optional[datetime] = None


class TaskBulkCreate(BaseModel):
    tasks: List[TaskCreate] = Field(..., min_length=1, max_length=100)


class AssigneeAdd(BaseModel):
    user_id: str = Field(..., min_length=1)


class TaskOut(BaseModel):
    id: str
    list_id: str
    workspace_id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    creator_id: str
    due_date: Optional[str] = None
    assignees: List[str] = []
    labels: List[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


async def _assignee_ids(db: AsyncSession, task_id: str) -> List[str]:
    result = await db.execute(select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id))
    return sorted(result.scalars().all())


async def _task_to_out(task: Task, db: AsyncSession) -> TaskOut:
    labels = await db.execute(select(TaskLabel.label_id).where(TaskLabel.task_id == task.id))
    return TaskOut(
        id=task.id,
        list_id=task.list_id,
        workspace_id=task.workspace_id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        creator_id=task.creator_id,
        due_date=_ts(task.due_date),
        assignees=await _assignee_ids(db, task.id),
        labels=sorted(labels.scalars().all()),
        created_at=_ts(task.created_at),
        updated_at=_ts(task.updated_at),
    )


async def _get_task(task_id: str, user: CurrentUser, db: AsyncSession) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    await require_workspace_member(db, task.workspace_id, user)
    return task


async def _dispatch(db: AsyncSession, trigger: TriggerType, ctx: EventContext):
    """Run automations after the mutation committed; never fails the request"""
    try:
        await run_automations(db, trigger, ctx)
    except Exception:
        await db.rollback()
        logger.exception(f"Error running {trigger.value} automations for task {ctx.task_id}")


async def _ensure_due_date_reminder(db: AsyncSession, task: Task, user_id: str):
    try:
        if await auto_create_due_date_reminder(db, task.id, user_id, task.due_date):
            await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(f"Error creating due-date reminder for task {task.id}")


# ============================================================
# TASKS
# ============================================================

async def _list_workspace(list_id: str, user: CurrentUser, db: AsyncSession) -> str:
    row = (await db.execute(
        select(TaskList.id, Space.workspace_id)
        .join(Space, Space.id == TaskList.space_id)
        .where(TaskList.id == list_id)
    )).first()
    if row is None:
        raise HTTPException(status_code=404, detail="List not found")
    await require_workspace_member(db, row.workspace_id, user)
    return row.workspace_id


def _new_task(data: TaskCreate, list_id: str, workspace_id: str, user: CurrentUser) -> Task:
    return Task(
        id=new_uuid(),
        list_id=list_id,
        workspace_id=workspace_id,
        title=data.title,
        description=data.description,
        status=data.status or "todo",
        priority=data.priority,
        creator_id=user.id,
        due_date=as_utc(data.due_date),
    )


async def _after_create(db: AsyncSession, task: Task, workspace_id: str, user: CurrentUser):
    task_id = task.id
    if task.due_date is not None:
        await _ensure_due_date_reminder(db, task, user.id)
    await _dispatch(db, TriggerType.TASK_CREATED, EventContext(
        task_id=task_id, workspace_id=workspace_id, user_id=user.id,
    ))


@router.post("/lists/{list_id}/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    list_id: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace_id = await _list_workspace(list_id, user, db)

    task = _new_task(data, list_id, workspace_id, user)
    db.add(task)
    await db.commit()
    task_id = task.id

    await _after_create(db, task, workspace_id, user)

    task = await db.get(Task, task_id, populate_existing=True)
    return await _task_to_out(task, db)


@router.post("/lists/{list_id}/tasks/bulk", status_code=201)
async def bulk_create_tasks(
    list_id: str,
    data: TaskBulkCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create several tasks in one transaction; automations run once per created task"""
    workspace_id = await _list_workspace(list_id, user, db)

    tasks = [_new_task(item, list_id, workspace_id, user) for item in data.tasks]
    db.add_all(tasks)
    await db.commit()
    task_ids = [t.id for t in tasks]

    for task_id in task_ids:
        task = await db.get(Task, task_id, populate_existing=True)
        await _after_create(db, task, workspace_id, user)

    created = []
    for task_id in task_ids:
        task = await db.get(Task, task_id, populate_existing=True)
        created.append(await _task_to_out(task, db))
    return {"tasks": created}


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(task_id, user, db)
    return await _task_to_out(task, db)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(task_id, user, db)
    workspace_id = task.workspace_id
    old_status = task.status
    old_due = as_utc(task.due_date)

    if data.title is not None:
        task.title = data.title
    if data.description is not None:
        task.description = data.description
    if data.priority is not None:
        task.priority = data.priority
    if data.status is not None:
        task.status = data.status
    # An explicit null clears the due date; an absent field leaves it alone
    new_due = as_utc(data.due_date)
    if "due_date" in data.model_fields_set:
        task.due_date = new_due

    await db.commit()

    # Reminder only when a due date is first set or pushed later
    if new_due is not None and (old_due is None or new_due > old_due):
        await _ensure_due_date_reminder(db, task, user.id)

    if data.status is not None and data.status != old_status:
        await _dispatch(db, TriggerType.STATUS_CHANGE, EventContext(
            task_id=task_id, workspace_id=workspace_id, user_id=user.id,
            old_status=old_status, new_status=data.status,
        ))

    task = await db.get(Task, task_id, populate_existing=True)
    return await _task_to_out(task, db)


# ============================================================
# ASSIGNEES
# ============================================================

@router.post("/tasks/{task_id}/assignees", response_model=TaskOut, status_code=201)
async def add_assignee(
    task_id: str,
    data: AssigneeAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(task_id, user, db)
    workspace_id = task.workspace_id
    if await get_membership(db, workspace_id, data.user_id) is None:
        raise HTTPException(status_code=400, detail="User is not a member of this workspace")

    previous = await _assignee_ids(db, task_id)
    if data.user_id in previous:
        raise HTTPException(status_code=400, detail="User is already assigned to this task")

    db.add(TaskAssignee(task_id=task_id, user_id=data.user_id))
    pushes = []
    if data.user_id != user.id:
        notif = record_notification(
            db,
            user_id=data.user_id,
            type=NotificationType.TASK_ASSIGNED.value,
            title=f'You were assigned to "{task.title}"'[:255],
            message=f"{user.display_name or 'Someone'} assigned you to a task",
            entity_type="task",
            entity_id=task_id,
        )
        await db.commit()
        pushes.append(snapshot(notif))
    else:
        await db.commit()
    await publish(workspace_id, pushes)

    await _dispatch(db, TriggerType.ASSIGNMENT, EventContext(
        task_id=task_id, workspace_id=workspace_id, user_id=user.id,
        previous_assignees=tuple(previous), new_assignees=tuple(previous + [data.user_id]),
    ))

    task = await db.get(Task, task_id, populate_existing=True)
    return await _task_to_out(task, db)


@router.delete("/tasks/{task_id}/assignees/{assignee_id}", response_model=TaskOut)
async def remove_assignee(
    task_id: str,
    assignee_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(task_id, user, db)
    workspace_id = task.workspace_id
    previous = await _assignee_ids(db, task_id)
    if assignee_id not in previous:
        raise HTTPException(status_code=404, detail="Assignee not found")

    await db.execute(delete(TaskAssignee).where(
        TaskAssignee.task_id == task_id, TaskAssignee.user_id == assignee_id,
    ))
    await db.commit()

    await _dispatch(db, TriggerType.ASSIGNMENT, EventContext(
        task_id=task_id, workspace_id=workspace_id, user_id=user.id,
        previous_assignees=tuple(previous),
        new_assignees=tuple(u for u in previous if u != assignee_id),
    ))

    task = await db.get(Task, task_id, populate_existing=True)
    return await _task_to_out(task, db)
