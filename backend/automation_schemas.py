# automation_schemas.py — Typed trigger/action configs and the dispatch event context
"""
Each trigger type and action type owns an explicit config model. Rules are
validated against these models when they are authored; at dispatch time a
config that no longer parses is treated as a configuration error and the
rule is skipped.
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from models import ActionType, TriggerType


class ConfigError(ValueError):
    """A trigger or action config does not match the schema for its type tag"""


class _Config(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# ============================================================
# TRIGGER CONFIGS
# ============================================================

class StatusChangeTrigger(_Config):
    from_status: str = Field(..., min_length=1, validation_alias=AliasChoices("from_status", "fromStatus"))
    to_status: str = Field(..., min_length=1, validation_alias=AliasChoices("to_status", "toStatus"))


class TaskCreatedTrigger(_Config):
    pass


class DueDateApproachingTrigger(_Config):
    # Approach window used by the scheduler, not by the evaluator
    hours_before: int = Field(
        default=24, ge=1, le=24 * 30,
        validation_alias=AliasChoices("hours_before", "hoursBefore"),
    )


class AssignmentTrigger(_Config):
    pass


TRIGGER_CONFIG_MODELS: Dict[TriggerType, Type[_Config]] = {
    TriggerType.STATUS_CHANGE: StatusChangeTrigger,
    TriggerType.TASK_CREATED: TaskCreatedTrigger,
    TriggerType.DUE_DATE_APPROACHING: DueDateApproachingTrigger,
    TriggerType.ASSIGNMENT: AssignmentTrigger,
}


# ============================================================
# ACTION CONFIGS
# ============================================================

class ChangeStatusAction(_Config):
    status: str = Field(..., min_length=1, max_length=50)


class AssignUserAction(_Config):
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))


class AddLabelAction(_Config):
    label_id: str = Field(..., min_length=1, validation_alias=AliasChoices("label_id", "labelId"))


class SendNotificationAction(_Config):
    user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    title: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = Field(default=None, max_length=2000)


ACTION_CONFIG_MODELS: Dict[ActionType, Type[_Config]] = {
    ActionType.CHANGE_STATUS: ChangeStatusAction,
    ActionType.ASSIGN_USER: AssignUserAction,
    ActionType.ADD_LABEL: AddLabelAction,
    ActionType.SEND_NOTIFICATION: SendNotificationAction,
}


def _parse(models: Dict[Any, Type[_Config]], enum_cls, type_tag: Any, raw: Any) -> _Config:
    try:
        tag = enum_cls(type_tag)
    except ValueError:
        raise ConfigError(f"Unknown type: {type_tag!r}")
    if isinstance(raw, models[tag]):
        return raw
    try:
        return models[tag].model_validate(raw if raw is not None else {})
    except ValidationError as e:
        raise ConfigError(f"Invalid {tag.value} config: {e.error_count()} error(s)") from e


def parse_trigger_config(trigger_type: Any, raw: Any) -> _Config:
    return _parse(TRIGGER_CONFIG_MODELS, TriggerType, trigger_type, raw)


def parse_action_config(action_type: Any, raw: Any) -> _Config:
    return _parse(ACTION_CONFIG_MODELS, ActionType, action_type, raw)


# ============================================================
# EVENT CONTEXT
# ============================================================

ORIGIN_USER = "user"
ORIGIN_AUTOMATION = "automation"
ORIGIN_SCHEDULER = "scheduler"


@dataclass(frozen=True)
class EventContext:
    """One occurrence of a trigger-worthy mutation"""
    task_id: str
    workspace_id: str
    user_id: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    previous_assignees: Optional[Tuple[str, ...]] = None
    new_assignees: Optional[Tuple[str, ...]] = None
    depth: int = 0
    origin: str = ORIGIN_USER
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def follow_up(self, **changes) -> "EventContext":
        """Context for a mutation performed by the engine while handling this one"""
        base = dict(
            old_status=None, new_status=None,
            previous_assignees=None, new_assignees=None,
            depth=self.depth + 1, origin=ORIGIN_AUTOMATION, extra={},
        )
        base.update(changes)
        return replace(self, **base)
