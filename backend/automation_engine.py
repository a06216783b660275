# automation_engine.py — Workspace automation rules: matching, execution and dispatch
"""
Automation engine

    mutation path ──commit──▶ run_automations(db, trigger, ctx)
                                 │
                                 ├─ load enabled rules for (workspace, trigger)
                                 ├─ matches(trigger, trigger_config, ctx)
                                 └─ apply_action(db, action, action_config, ctx)
                                        │
                                        └─ status/assignee writes re-enter
                                           run_automations with ctx.depth + 1

Each rule runs in its own unit of work: it commits on success and rolls back
on failure, so one broken rule never blocks its siblings or the mutation
that triggered the batch. Re-entrant dispatch stops once ctx.depth exceeds
AUTOMATION_MAX_DEPTH.
"""
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from automation_schemas import (
    ConfigError, EventContext, parse_action_config, parse_trigger_config,
    AssignUserAction, AddLabelAction, ChangeStatusAction, SendNotificationAction,
)
from models import (
    Automation, Label, Notification, NotificationType, Task, TaskAssignee, TaskLabel, User,
    ActionType, TriggerType,
)
from notification_sink import PendingPush, record_notification, publish, snapshot
from telemetry import get_tracer

logger = logging.getLogger("taskforge.automations")
tracer = get_tracer("taskforge.automations")

AUTOMATION_MAX_DEPTH = int(os.getenv("AUTOMATION_MAX_DEPTH", "5"))

DEFAULT_NOTIFICATION_TITLE = "Automation triggered"
DEFAULT_NOTIFICATION_MESSAGE = "Task was updated by automation: {task_id}"


# ============================================================
# RULE STORE
# ============================================================

@dataclass(frozen=True)
class RuleSnapshot:
    """Detached copy of an Automation row; survives session rollbacks"""
    id: str
    workspace_id: str
    name: str
    trigger_type: str
    trigger_config: Any
    action_type: str
    action_config: Any

    @classmethod
    def from_row(cls, row: Automation) -> "RuleSnapshot":
        return cls(
            id=row.id,
            workspace_id=row.workspace_id,
            name=row.name,
            trigger_type=row.trigger_type,
            trigger_config=row.trigger_config,
            action_type=row.action_type,
            action_config=row.action_config,
        )


async def load_candidate_rules(db: AsyncSession, workspace_id: str, trigger_type: TriggerType) -> List[RuleSnapshot]:
    stmt = (
        select(Automation)
        .where(
            Automation.workspace_id == workspace_id,
            Automation.trigger_type == TriggerType(trigger_type).value,
            Automation.enabled.is_(True),
        )
        .order_by(Automation.created_at.asc(), Automation.id.asc())
    )
    result = await db.execute(stmt)
    return [RuleSnapshot.from_row(r) for r in result.scalars().all()]


async def load_rules_for_trigger(db: AsyncSession, trigger_type: TriggerType) -> List[RuleSnapshot]:
    """All enabled rules for a trigger across workspaces (scheduler path)"""
    stmt = (
        select(Automation)
        .where(
            Automation.trigger_type == TriggerType(trigger_type).value,
            Automation.enabled.is_(True),
        )
        .order_by(Automation.workspace_id.asc(), Automation.created_at.asc())
    )
    result = await db.execute(stmt)
    return [RuleSnapshot.from_row(r) for r in result.scalars().all()]


# ============================================================
# CONDITION EVALUATOR
# ============================================================

def matches(trigger_type: Any, trigger_config: Any, ctx: EventContext) -> bool:
    """Whether a rule's trigger matches the event. Total: bad input yields False."""
    try:
        config = parse_trigger_config(trigger_type, trigger_config)
        tag = TriggerType(trigger_type)
    except (ConfigError, ValueError):
        return False

    if tag == TriggerType.STATUS_CHANGE:
        if ctx.old_status is None or ctx.new_status is None:
            return False
        return ctx.old_status == config.from_status and ctx.new_status == config.to_status

    if tag == TriggerType.ASSIGNMENT:
        if ctx.previous_assignees is None or ctx.new_assignees is None:
            return False
        try:
            added = set(ctx.new_assignees) - set(ctx.previous_assignees)
        except TypeError:
            return False
        return len(added) > 0

    # task_created carries no condition; due_date_approaching timing belongs to the scheduler
    return tag in (TriggerType.TASK_CREATED, TriggerType.DUE_DATE_APPROACHING)


# ============================================================
# ACTION EXECUTOR
# ============================================================

@dataclass(frozen=True)
class StatusWrite:
    task_id: str
    old_status: Optional[str]
    new_status: str


@dataclass(frozen=True)
class AssigneeInsert:
    task_id: str
    user_id: str
    previous_assignees: Tuple[str, ...]


@dataclass(frozen=True)
class LabelInsert:
    task_id: str
    label_id: str


@dataclass(frozen=True)
class NotificationInsert:
    notification: Notification


@dataclass
class ActionResult:
    effects: List[Any] = field(default_factory=list)

    @property
    def notifications(self) -> List[Notification]:
        return [e.notification for e in self.effects if isinstance(e, NotificationInsert)]

    def follow_ups(self, ctx: EventContext) -> List[Tuple[TriggerType, EventContext]]:
        """Trigger-worthy mutations this action performed"""
        events = []
        for effect in self.effects:
            if isinstance(effect, StatusWrite) and effect.old_status != effect.new_status:
                events.append((TriggerType.STATUS_CHANGE, ctx.follow_up(
                    old_status=effect.old_status, new_status=effect.new_status,
                )))
            elif isinstance(effect, AssigneeInsert):
                events.append((TriggerType.ASSIGNMENT, ctx.follow_up(
                    previous_assignees=effect.previous_assignees,
                    new_assignees=effect.previous_assignees + (effect.user_id,),
                )))
        return events


class _TemplateValues(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def render_template(template: str, values: Dict[str, Any]) -> str:
    """str.format with unknown placeholders left verbatim; malformed templates returned as-is"""
    try:
        return template.format_map(_TemplateValues({k: "" if v is None else v for k, v in values.items()}))
    except (ValueError, IndexError, AttributeError, KeyError, TypeError):
        return template


async def insert_ignore(db: AsyncSession, model, **values) -> bool:
    """INSERT that silently keeps the existing row on key conflict. Returns True if a row was written."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing()
    else:
        pk = [c.name for c in model.__table__.primary_key.columns]
        exists = await db.execute(
            select(*[model.__table__.c[name] for name in pk]).where(
                *[model.__table__.c[name] == values[name] for name in pk]
            )
        )
        if exists.first() is not None:
            return False
        stmt = insert(model).values(**values)
    result = await db.execute(stmt)
    return (result.rowcount or 0) > 0


async def _load_task(db: AsyncSession, ctx: EventContext) -> Optional[Task]:
    stmt = (
        select(Task)
        .where(Task.id == ctx.task_id, Task.workspace_id == ctx.workspace_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _change_status(db: AsyncSession, config: ChangeStatusAction, ctx: EventContext) -> ActionResult:
    task = await _load_task(db, ctx)
    if task is None:
        logger.info(f"change_status skipped: task {ctx.task_id} not found")
        return ActionResult()
    old_status = task.status
    task.status = config.status
    return ActionResult([StatusWrite(task.id, old_status, config.status)])


async def _assign_user(db: AsyncSession, config: AssignUserAction, ctx: EventContext) -> ActionResult:
    task = await _load_task(db, ctx)
    if task is None or await db.get(User, config.user_id) is None:
        logger.info(f"assign_user skipped: task {ctx.task_id} or user {config.user_id} not found")
        return ActionResult()
    rows = await db.execute(select(TaskAssignee.user_id).where(TaskAssignee.task_id == task.id))
    previous = tuple(sorted(rows.scalars().all()))
    if not await insert_ignore(db, TaskAssignee, task_id=task.id, user_id=config.user_id):
        return ActionResult()
    return ActionResult([AssigneeInsert(task.id, config.user_id, previous)])


async def _add_label(db: AsyncSession, config: AddLabelAction, ctx: EventContext) -> ActionResult:
    task = await _load_task(db, ctx)
    if task is None:
        return ActionResult()
    label = (await db.execute(
        select(Label).where(Label.id == config.label_id, Label.workspace_id == task.workspace_id)
    )).scalar_one_or_none()
    if label is None:
        logger.info(f"add_label skipped: label {config.label_id} not in workspace {task.workspace_id}")
        return ActionResult()
    if not await insert_ignore(db, TaskLabel, task_id=task.id, label_id=label.id):
        return ActionResult()
    return ActionResult([LabelInsert(task.id, label.id)])


async def _send_notification(db: AsyncSession, config: SendNotificationAction, ctx: EventContext) -> ActionResult:
    task = await _load_task(db, ctx)
    if task is None or await db.get(User, config.user_id) is None:
        logger.info(f"send_notification skipped: task {ctx.task_id} or user {config.user_id} not found")
        return ActionResult()
    values = {
        "task_id": task.id,
        "task_title": task.title,
        "workspace_id": ctx.workspace_id,
        "old_status": ctx.old_status,
        "new_status": ctx.new_status,
    }
    notif = record_notification(
        db,
        user_id=config.user_id,
        type=NotificationType.AUTOMATION.value,
        title=render_template(config.title or DEFAULT_NOTIFICATION_TITLE, values),
        message=render_template(config.message or DEFAULT_NOTIFICATION_MESSAGE, values),
        entity_type="task",
        entity_id=task.id,
    )
    return ActionResult([NotificationInsert(notif)])


_ACTION_HANDLERS: Dict[ActionType, Callable[..., Awaitable[ActionResult]]] = {
    ActionType.CHANGE_STATUS: _change_status,
    ActionType.ASSIGN_USER: _assign_user,
    ActionType.ADD_LABEL: _add_label,
    ActionType.SEND_NOTIFICATION: _send_notification,
}


async def apply_action(db: AsyncSession, action_type: Any, action_config: Any, ctx: EventContext) -> ActionResult:
    """Stage an action's writes on the session. Config errors degrade to an empty result."""
    try:
        config = parse_action_config(action_type, action_config)
    except ConfigError as e:
        logger.warning(f"Action {action_type!r} skipped for task {ctx.task_id}: {e}")
        return ActionResult()
    return await _ACTION_HANDLERS[ActionType(action_type)](db, config, ctx)


# ============================================================
# DISPATCHER
# ============================================================

@dataclass
class DispatchReport:
    trigger_type: str
    candidates: int = 0
    matched: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False
    notifications: List[PendingPush] = field(default_factory=list)


async def execute_rule(
    db: AsyncSession,
    rule: RuleSnapshot,
    ctx: EventContext,
    report: DispatchReport,
    claim: Optional[Callable[[], Awaitable[bool]]] = None,
) -> Optional[ActionResult]:
    """Evaluate and execute one rule as an isolated unit of work.

    `claim`, when given, runs inside the same transaction before the action;
    returning False abandons the rule without effects.
    """
    report.candidates += 1
    try:
        parse_trigger_config(rule.trigger_type, rule.trigger_config)
        parse_action_config(rule.action_type, rule.action_config)
    except ConfigError as e:
        report.skipped += 1
        logger.warning(f"Automation {rule.id} ({rule.name}) skipped: {e}")
        return None

    if not matches(rule.trigger_type, rule.trigger_config, ctx):
        return None
    report.matched += 1

    try:
        with tracer.start_as_current_span("automation.rule") as span:
            span.set_attribute("automation.id", rule.id)
            span.set_attribute("automation.action", str(rule.action_type))
            if claim is not None and not await claim():
                await db.rollback()
                return None
            result = await apply_action(db, rule.action_type, rule.action_config, ctx)
            await db.commit()
    except Exception:
        await db.rollback()
        report.failed += 1
        logger.exception(f"Automation {rule.id} ({rule.name}) failed for task {ctx.task_id}")
        return None

    report.executed += 1
    report.notifications.extend(snapshot(n) for n in result.notifications)
    logger.info(
        f"Automation {rule.id} ({rule.name}) applied {len(result.effects)} effect(s) "
        f"to task {ctx.task_id} [depth={ctx.depth}]"
    )

    for follow_trigger, follow_ctx in result.follow_ups(ctx):
        try:
            await _dispatch(db, follow_trigger, follow_ctx, report)
        except Exception:
            logger.exception(f"Follow-up {follow_trigger.value} dispatch failed for task {ctx.task_id}")
    return result


async def _dispatch(db: AsyncSession, trigger_type: TriggerType, ctx: EventContext, report: DispatchReport):
    if ctx.depth > AUTOMATION_MAX_DEPTH:
        report.aborted = True
        logger.warning(
            f"Automation loop suspected: {trigger_type.value} for task {ctx.task_id} "
            f"reached depth {ctx.depth} (max {AUTOMATION_MAX_DEPTH}); dispatch aborted"
        )
        return

    with tracer.start_as_current_span("automation.dispatch") as span:
        span.set_attribute("automation.trigger", trigger_type.value)
        span.set_attribute("automation.depth", ctx.depth)
        rules = await load_candidate_rules(db, ctx.workspace_id, trigger_type)
        for rule in rules:
            await execute_rule(db, rule, ctx, report)


async def run_automations(db: AsyncSession, trigger_type: Any, ctx: EventContext) -> DispatchReport:
    """Run every enabled rule of `trigger_type` in the event's workspace.

    Call after the triggering mutation has committed. Per-rule failures are
    logged and absorbed; a failure to load rules propagates.
    """
    trigger = TriggerType(trigger_type)
    report = DispatchReport(trigger.value)
    await _dispatch(db, trigger, ctx, report)
    if report.notifications:
        await publish(ctx.workspace_id, report.notifications)
    if report.matched:
        logger.info(
            f"Dispatch {trigger.value} task={ctx.task_id}: matched={report.matched} "
            f"executed={report.executed} failed={report.failed} skipped={report.skipped}"
        )
    return report
