"""Initial Taskforge schema: workspaces, tasks, automations, reminders, notifications

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates:
- users, workspaces, workspace_members (tenancy)
- spaces, lists, tasks, task_assignees, labels, task_labels (task hierarchy)
- automations, automation_firings (rule store, due-date firing ledger)
- reminders (scheduled per-user reminders)
- notifications (append-only inbox)
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1f3c5e7b9d2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---- users ----
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # ---- workspaces ----
    op.create_table(
        'workspaces',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )

    # ---- workspace_members ----
    op.create_table(
        'workspace_members',
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('workspace_id', 'user_id'),
    )
    op.create_index('idx_wm_user', 'workspace_members', ['user_id'])

    # ---- spaces / lists ----
    op.create_table(
        'spaces',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_spaces_workspace_id', 'spaces', ['workspace_id'])

    op.create_table(
        'lists',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('space_id', sa.String(), sa.ForeignKey('spaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lists_space_id', 'lists', ['space_id'])

    # ---- tasks ----
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('list_id', sa.String(), sa.ForeignKey('lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('priority', sa.String(), nullable=False),
        sa.Column('creator_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_list_id', 'tasks', ['list_id'])
    op.create_index('ix_tasks_workspace_id', 'tasks', ['workspace_id'])
    op.create_index('idx_task_ws_due', 'tasks', ['workspace_id', 'due_date'])
    op.create_index('idx_task_status', 'tasks', ['status'])

    op.create_table(
        'task_assignees',
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.PrimaryKeyConstraint('task_id', 'user_id'),
    )
    op.create_index('idx_ta_user', 'task_assignees', ['user_id'])

    # ---- labels ----
    op.create_table(
        'labels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_labels_workspace_id', 'labels', ['workspace_id'])

    op.create_table(
        'task_labels',
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('label_id', sa.String(), sa.ForeignKey('labels.id', ondelete='CASCADE'), nullable=False),
        sa.PrimaryKeyConstraint('task_id', 'label_id'),
    )

    # ---- automations ----
    op.create_table(
        'automations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('trigger_type', sa.String(), nullable=False),
        sa.Column('trigger_config', sa.JSON()),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('action_config', sa.JSON()),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_automations_workspace_id', 'automations', ['workspace_id'])
    op.create_index('idx_automation_ws_trigger', 'automations', ['workspace_id', 'trigger_type', 'enabled'])

    op.create_table(
        'automation_firings',
        sa.Column('automation_id', sa.String(), sa.ForeignKey('automations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('fired_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('automation_id', 'task_id', 'due_date'),
    )

    # ---- reminders ----
    op.create_table(
        'reminders',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('remind_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('sent', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('task_id', 'user_id', 'remind_at', name='uq_reminder_task_user_time'),
    )
    op.create_index('ix_reminders_task_id', 'reminders', ['task_id'])
    op.create_index('ix_reminders_user_id', 'reminders', ['user_id'])
    op.create_index('idx_reminder_due', 'reminders', ['sent', 'remind_at'])

    # ---- notifications ----
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False),
        sa.Column('channels', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'read'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('reminders')
    op.drop_table('automation_firings')
    op.drop_table('automations')
    op.drop_table('task_labels')
    op.drop_table('labels')
    op.drop_table('task_assignees')
    op.drop_table('tasks')
    op.drop_table('lists')
    op.drop_table('spaces')
    op.drop_table('workspace_members')
    op.drop_table('workspaces')
    op.drop_table('users')
