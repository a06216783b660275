# routers/automations.py — Workspace automation rule authoring
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_workspace_member, CurrentUser, ADMIN_ROLES
from automation_schemas import ConfigError, parse_action_config, parse_trigger_config
from database import get_db_session
from models import Automation, ActionType, TriggerType, new_uuid, utcnow

router = APIRouter(prefix="/api/v1", tags=["Automations"])


# ============================================================
# SCHEMAS
# ============================================================

class AutomationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    trigger_type: TriggerType
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    action_type: ActionType
    action_config: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class AutomationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    trigger_type: Optional[TriggerType] = None
    trigger_config: Optional[Dict[str, Any]] = None
    action_type: Optional[ActionType] = None
    action_config: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None


class AutomationOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    enabled: bool
    trigger_type: str
    trigger_config: Dict[str, Any]
    action_type: str
    action_config: Dict[str, Any]
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _automation_out(a: Automation) -> AutomationOut:
    return AutomationOut(
        id=a.id,
        workspace_id=a.workspace_id,
        name=a.name,
        enabled=bool(a.enabled),
        trigger_type=a.trigger_type,
        trigger_config=a.trigger_config or {},
        action_type=a.action_type,
        action_config=a.action_config or {},
        created_by=a.created_by,
        created_at=a.created_at.isoformat() if a.created_at else None,
        updated_at=a.updated_at.isoformat() if a.updated_at else None,
    )


def _validated_configs(trigger_type, trigger_config, action_type, action_config):
    """Normalise both configs through their typed models; 422 on mismatch"""
    try:
        trigger = parse_trigger_config(trigger_type, trigger_config)
        action = parse_action_config(action_type, action_config)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return trigger.model_dump(exclude_none=True), action.model_dump(exclude_none=True)


async def _get_automation(automation_id: str, db: AsyncSession) -> Automation:
    automation = await db.get(Automation, automation_id)
    if not automation:
        raise HTTPException(status_code=404, detail="Automation not found")
    return automation


# ============================================================
# WORKSPACE COLLECTION
# ============================================================

@router.get("/workspaces/{workspace_id}/automations", response_model=List[AutomationOut])
async def list_automations(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await require_workspace_member(db, workspace_id, user)
    result = await db.execute(
        select(Automation)
        .where(Automation.workspace_id == workspace_id)
        .order_by(Automation.created_at.asc())
    )
    return [_automation_out(a) for a in result.scalars().all()]


@router.post("/workspaces/{workspace_id}/automations", response_model=AutomationOut, status_code=201)
async def create_automation(
    workspace_id: str,
    data: AutomationCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a rule. Owner/admin only."""
    await require_workspace_member(db, workspace_id, user, roles=ADMIN_ROLES)
    trigger_config, action_config = _validated_configs(
        data.trigger_type, data.trigger_config, data.action_type, data.action_config,
    )

    automation = Automation(
        id=new_uuid(),
        workspace_id=workspace_id,
        name=data.name,
        enabled=data.enabled,
        trigger_type=data.trigger_type.value,
        trigger_config=trigger_config,
        action_type=data.action_type.value,
        action_config=action_config,
        created_by=user.id,
    )
    db.add(automation)
    await db.commit()
    await db.refresh(automation)
    return _automation_out(automation)


# ============================================================
# SINGLE RULE
# ============================================================

@router.get("/automations/{automation_id}", response_model=AutomationOut)
async def get_automation(
    automation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    automation = await _get_automation(automation_id, db)
    await require_workspace_member(db, automation.workspace_id, user)
    return _automation_out(automation)


@router.patch("/automations/{automation_id}", response_model=AutomationOut)
async def update_automation(
    automation_id: str,
    data: AutomationUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    automation = await _get_automation(automation_id, db)
    await require_workspace_member(db, automation.workspace_id, user, roles=ADMIN_ROLES)

    # A type change without a new config is validated against the stored config
    trigger_type = data.trigger_type.value if data.trigger_type else automation.trigger_type
    action_type = data.action_type.value if data.action_type else automation.action_type
    trigger_config = data.trigger_config if data.trigger_config is not None else automation.trigger_config
    action_config = data.action_config if data.action_config is not None else automation.action_config
    trigger_config, action_config = _validated_configs(trigger_type, trigger_config, action_type, action_config)

    if data.name is not None:
        automation.name = data.name
    if data.enabled is not None:
        automation.enabled = data.enabled
    automation.trigger_type = trigger_type
    automation.trigger_config = trigger_config
    automation.action_type = action_type
    automation.action_config = action_config
    automation.updated_at = utcnow()

    await db.commit()
    await db.refresh(automation)
    return _automation_out(automation)


@router.delete("/automations/{automation_id}")
async def delete_automation(
    automation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    automation = await _get_automation(automation_id, db)
    await require_workspace_member(db, automation.workspace_id, user, roles=ADMIN_ROLES)
    await db.delete(automation)
    await db.commit()
    return {"status": "deleted"}
