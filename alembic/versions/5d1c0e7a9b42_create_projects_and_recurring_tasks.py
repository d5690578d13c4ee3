"""create projects, tasks and recurring task instances

Revision ID: 5d1c0e7a9b42
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5d1c0e7a9b42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'tasks',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('project_id', sa.String(length=36), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='todo'),
        sa.Column('assignee_id', sa.String(length=64), nullable=True),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        # is_recurring: marks the task as a template for generated instances
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('recurrence_pattern', sa.JSON(), nullable=True),
        # original_task_id: template link on instances, deliberately without a foreign key
        sa.Column('original_task_id', sa.String(length=36), nullable=True),
        sa.Column('occurrence_number', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_original_task_id', 'tasks', ['original_task_id'])

    op.create_table(
        'recurring_task_instances',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('original_task_id', sa.String(length=36), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('generated_task_id', sa.String(length=36), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('occurrence_number', sa.Integer(), nullable=False),
        sa.Column('scheduled_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('original_task_id', 'occurrence_number', name='uq_recurring_instance_occurrence'),
    )
    op.create_index('ix_recurring_task_instances_original_task_id', 'recurring_task_instances', ['original_task_id'])
    op.create_index('ix_recurring_task_instances_scheduled_date', 'recurring_task_instances', ['scheduled_date'])


def downgrade() -> None:
    op.drop_index('ix_recurring_task_instances_scheduled_date', table_name='recurring_task_instances')
    op.drop_index('ix_recurring_task_instances_original_task_id', table_name='recurring_task_instances')
    op.drop_table('recurring_task_instances')
    op.drop_index('ix_tasks_original_task_id', table_name='tasks')
    op.drop_index('ix_tasks_project_id', table_name='tasks')
    op.drop_table('tasks')
    op.drop_table('projects')
