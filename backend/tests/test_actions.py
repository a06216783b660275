"""Tests for automation actions."""
import uuid

import pytest
from sqlalchemy import select, func

from automation_engine import apply_action, render_template
from automation_schemas import EventContext
from models import Label, Notification, Task, TaskAssignee, TaskLabel, Workspace


def _ctx(task, **kw):
    return EventContext(task_id=task.id, workspace_id=task.workspace_id, **kw)


async def _count(db, model, **where):
    stmt = select(func.count()).select_from(model)
    for k, v in where.items():
        stmt = stmt.where(getattr(model, k) == v)
    return (await db.execute(stmt)).scalar()


@pytest.mark.asyncio
async def test_assign_user_is_idempotent(db_session, task, member):
    first = await apply_action(db_session, "assign_user", {"user_id": member.id}, _ctx(task))
    await db_session.commit()
    second = await apply_action(db_session, "assign_user", {"userId": member.id}, _ctx(task))
    await db_session.commit()

    assert len(first.effects) == 1
    assert second.effects == []
    assert await _count(db_session, TaskAssignee, task_id=task.id, user_id=member.id) == 1


@pytest.mark.asyncio
async def test_assign_user_reports_follow_up_assignment(db_session, task, member):
    result = await apply_action(db_session, "assign_user", {"user_id": member.id}, _ctx(task))
    await db_session.commit()
    (trigger, follow), = result.follow_ups(_ctx(task))
    assert trigger.value == "assignment"
    assert follow.previous_assignees == ()
    assert follow.new_assignees == (member.id,)
    assert follow.depth == 1
    assert follow.origin == "automation"


@pytest.mark.asyncio
async def test_assign_unknown_user_is_noop(db_session, task):
    result = await apply_action(db_session, "assign_user", {"user_id": "ghost"}, _ctx(task))
    await db_session.commit()
    assert result.effects == []
    assert await _count(db_session, TaskAssignee, task_id=task.id) == 0


@pytest.mark.asyncio
async def test_add_label_is_idempotent(db_session, task, label):
    for _ in range(2):
        await apply_action(db_session, "add_label", {"label_id": label.id}, _ctx(task))
        await db_session.commit()
    assert await _count(db_session, TaskLabel, task_id=task.id, label_id=label.id) == 1


@pytest.mark.asyncio
async def test_add_label_from_other_workspace_is_ignored(db_session, task, owner):
    other = Workspace(id=str(uuid.uuid4()), name="Other", slug="other-ws", owner_id=owner.id)
    db_session.add(other)
    await db_session.commit()
    foreign = Label(id=str(uuid.uuid4()), workspace_id=other.id, name="foreign")
    db_session.add(foreign)
    await db_session.commit()

    result = await apply_action(db_session, "add_label", {"label_id": foreign.id}, _ctx(task))
    await db_session.commit()
    assert result.effects == []
    assert await _count(db_session, TaskLabel, task_id=task.id) == 0


@pytest.mark.asyncio
async def test_change_status_writes_and_reports_transition(db_session, task):
    result = await apply_action(db_session, "change_status", {"status": "done"}, _ctx(task))
    await db_session.commit()

    refreshed = await db_session.get(Task, task.id, populate_existing=True)
    assert refreshed.status == "done"
    (trigger, follow), = result.follow_ups(_ctx(task))
    assert (follow.old_status, follow.new_status) == ("todo", "done")


@pytest.mark.asyncio
async def test_change_status_to_same_value_has_no_follow_up(db_session, task):
    result = await apply_action(db_session, "change_status", {"status": "todo"}, _ctx(task))
    await db_session.commit()
    assert result.follow_ups(_ctx(task)) == []


@pytest.mark.asyncio
async def test_actions_ignore_task_outside_event_workspace(db_session, task):
    ctx = EventContext(task_id=task.id, workspace_id="some-other-workspace")
    result = await apply_action(db_session, "change_status", {"status": "done"}, ctx)
    await db_session.commit()
    assert result.effects == []
    refreshed = await db_session.get(Task, task.id, populate_existing=True)
    assert refreshed.status == "todo"


@pytest.mark.asyncio
async def test_missing_task_is_noop(db_session, workspace, member):
    ctx = EventContext(task_id="missing", workspace_id=workspace.id)
    for action, config in [
        ("change_status", {"status": "done"}),
        ("assign_user", {"user_id": member.id}),
        ("send_notification", {"user_id": member.id}),
    ]:
        result = await apply_action(db_session, action, config, ctx)
        assert result.effects == []


@pytest.mark.asyncio
async def test_send_notification_renders_templates(db_session, task, member):
    config = {
        "user_id": member.id,
        "title": "{task_title} moved to {new_status}",
        "message": "From {old_status} ({unknown})",
    }
    result = await apply_action(
        db_session, "send_notification", config, _ctx(task, old_status="todo", new_status="review"),
    )
    await db_session.commit()

    notif, = result.notifications
    assert notif.title == "Write release notes moved to review"
    assert notif.message == "From todo ({unknown})"
    assert notif.user_id == member.id
    assert notif.type == "automation"
    assert notif.entity_type == "task"
    assert notif.entity_id == task.id


@pytest.mark.asyncio
async def test_send_notification_defaults(db_session, task, member):
    result = await apply_action(db_session, "send_notification", {"user_id": member.id}, _ctx(task))
    await db_session.commit()
    notif, = result.notifications
    assert notif.title == "Automation triggered"
    assert notif.message == f"Task was updated by automation: {task.id}"
    assert await _count(db_session, Notification, user_id=member.id) == 1


@pytest.mark.asyncio
async def test_invalid_action_config_is_noop(db_session, task):
    result = await apply_action(db_session, "send_notification", {"title": "no recipient"}, _ctx(task))
    assert result.effects == []


def test_render_template_tolerates_malformed_input():
    assert render_template("Hi {", {}) == "Hi {"
    assert render_template("{task_title}", {"task_title": None}) == ""
    assert render_template("{a.b}", {"a": "x"}) == "{a.b}"
