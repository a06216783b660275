# models.py — Database models for Taskforge
# - UUID string primary keys everywhere
# - Workspace-scoped tenancy (workspaces → spaces → lists → tasks)
# - Automation rules, reminders and the notification store used by the engine

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Text, ForeignKey, Index,
    UniqueConstraint, PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class WorkspaceRole(str, PyEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"


class TriggerType(str, PyEnum):
    STATUS_CHANGE = "status_change"
    TASK_CREATED = "task_created"
    DUE_DATE_APPROACHING = "due_date_approaching"
    ASSIGNMENT = "assignment"


class ActionType(str, PyEnum):
    CHANGE_STATUS = "change_status"
    ASSIGN_USER = "assign_user"
    ADD_LABEL = "add_label"
    SEND_NOTIFICATION = "send_notification"


class ReminderType(str, PyEnum):
    NOTIFICATION = "notification"
    EMAIL = "email"
    BOTH = "both"


class NotificationType(str, PyEnum):
    AUTOMATION = "automation"
    TASK_REMINDER = "task_reminder"
    TASK_ASSIGNED = "task_assigned"


# ============================================================
# USERS & WORKSPACES
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    notifications = relationship("Notification", back_populates="user")


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    members = relationship("WorkspaceMember", back_populates="workspace")
    spaces = relationship("Space", back_populates="workspace")


class WorkspaceMember(Base):
    __tablename__ = "workspace_members"

    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String, nullable=False, default=WorkspaceRole.MEMBER.value)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        PrimaryKeyConstraint("workspace_id", "user_id"),
        Index("idx_wm_user", "user_id"),
    )


# ============================================================
# HIERARCHY: SPACES → LISTS → TASKS
# ============================================================

class Space(Base):
    __tablename__ = "spaces"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="spaces")
    lists = relationship("TaskList", back_populates="space")


class TaskList(Base):
    __tablename__ = "lists"

    id = Column(String, primary_key=True, default=new_uuid)
    space_id = Column(String, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    space = relationship("Space", back_populates="lists")
    tasks = relationship("Task", back_populates="task_list")


class Task(Base):
    """Task card; status is a free-form string shared with the board layer"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    list_id = Column(String, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, ForeignKey("workspaces.id"), nullable=False, index=True)  # denormalised from list.space
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="todo")
    priority = Column(String, nullable=False, default="none")
    creator_id = Column(String, ForeignKey("users.id"), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task_list = relationship("TaskList", back_populates="tasks")
    creator = relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        Index("idx_task_ws_due", "workspace_id", "due_date"),
        Index("idx_task_status", "status"),
    )


class TaskAssignee(Base):
    __tablename__ = "task_assignees"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("task_id", "user_id"),
        Index("idx_ta_user", "user_id"),
    )


class Label(Base):
    __tablename__ = "labels"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, default="#6366f1")


class TaskLabel(Base):
    __tablename__ = "task_labels"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    label_id = Column(String, ForeignKey("labels.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("task_id", "label_id"),
    )


# ============================================================
# AUTOMATIONS
# ============================================================

class Automation(Base):
    """One trigger → action binding, scoped to a workspace"""
    __tablename__ = "automations"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    trigger_type = Column(String, nullable=False)
    trigger_config = Column(JSON, default=dict)
    action_type = Column(String, nullable=False)
    action_config = Column(JSON, default=dict)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_automation_ws_trigger", "workspace_id", "trigger_type", "enabled"),
    )


class AutomationFiring(Base):
    """Ledger of due-date-approaching firings, one per rule × task × due date"""
    __tablename__ = "automation_firings"

    automation_id = Column(String, ForeignKey("automations.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    fired_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        PrimaryKeyConstraint("automation_id", "task_id", "due_date"),
    )


# ============================================================
# REMINDERS
# ============================================================

class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    remind_at = Column(DateTime(timezone=True), nullable=False)
    type = Column(String, nullable=False, default=ReminderType.NOTIFICATION.value)
    sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", "remind_at", name="uq_reminder_task_user_time"),
        Index("idx_reminder_due", "sent", "remind_at"),
    )


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    channels = Column(JSON, default=lambda: ["in-app"])
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read"),
    )
