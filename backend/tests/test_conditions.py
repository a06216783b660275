"""Tests for trigger matching."""
import itertools

import pytest

from automation_engine import matches
from automation_schemas import EventContext

STATUSES = ["todo", "in_progress", "review", "done"]


def _ctx(**kw):
    return EventContext(task_id="t1", workspace_id="w1", **kw)


def test_status_change_matches_only_configured_pair():
    config = {"from_status": "todo", "to_status": "in_progress"}
    for old, new in itertools.product(STATUSES, STATUSES):
        expected = (old, new) == ("todo", "in_progress")
        assert matches("status_change", config, _ctx(old_status=old, new_status=new)) is expected


def test_status_change_accepts_camel_case_config():
    config = {"fromStatus": "review", "toStatus": "done"}
    assert matches("status_change", config, _ctx(old_status="review", new_status="done"))


@pytest.mark.parametrize("ctx", [
    _ctx(old_status="todo"),
    _ctx(new_status="in_progress"),
    _ctx(),
])
def test_status_change_missing_values_never_match(ctx):
    assert matches("status_change", {"from_status": "todo", "to_status": "in_progress"}, ctx) is False


def test_assignment_matches_on_addition():
    ctx = _ctx(previous_assignees=(), new_assignees=("u1",))
    assert matches("assignment", {}, ctx)


def test_assignment_matches_when_swap_adds_someone():
    ctx = _ctx(previous_assignees=("u1",), new_assignees=("u2",))
    assert matches("assignment", {}, ctx)


@pytest.mark.parametrize("previous,new", [
    (("u1", "u2"), ("u1",)),
    (("u1",), ()),
    (("u1",), ("u1",)),
    ((), ()),
])
def test_assignment_removal_or_no_change_never_matches(previous, new):
    assert matches("assignment", {}, _ctx(previous_assignees=previous, new_assignees=new)) is False


def test_assignment_missing_lists_never_match():
    assert matches("assignment", {}, _ctx(new_assignees=("u1",))) is False
    assert matches("assignment", {}, _ctx(previous_assignees=())) is False


def test_task_created_always_matches():
    assert matches("task_created", {}, _ctx())
    assert matches("task_created", None, _ctx())


def test_due_date_approaching_matches_once_scheduled():
    assert matches("due_date_approaching", {"hours_before": 6}, _ctx())


@pytest.mark.parametrize("trigger_type,config", [
    ("status_change", {"from_status": "todo"}),
    ("status_change", "not-a-dict"),
    ("status_change", {"from_status": "", "to_status": "done"}),
    ("due_date_approaching", {"hours_before": 0}),
    ("comment_added", {}),
    (None, {}),
])
def test_malformed_rules_evaluate_false(trigger_type, config):
    ctx = _ctx(old_status="todo", new_status="done", previous_assignees=(), new_assignees=("u1",))
    assert matches(trigger_type, config, ctx) is False
