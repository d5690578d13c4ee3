import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from projectflow.db.base import Base


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    # Use String for SQLite compatibility - enum values are stored as lowercase strings
    status = Column(String(20), nullable=False, default=TaskStatus.TODO.value)
    assignee_id = Column(String(64), nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    due_date = Column(DateTime, nullable=True)

    # Recurring task fields
    is_recurring = Column(Boolean, nullable=False, default=False)
    # {"frequency": "daily|weekly|biweekly|monthly|quarterly|yearly", "interval": 1,
    #  "days_of_week": [1, 3], "day_of_month": 15, "end_date": "...", "max_occurrences": 10}
    recurrence_pattern = Column(JSON, nullable=True, default=None)
    # Not a foreign key: instances keep the link after their template is deleted
    original_task_id = Column(String(36), nullable=True, index=True)
    occurrence_number = Column(Integer, nullable=True, default=None)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    project = relationship("Project", back_populates="tasks")


class RecurringTaskInstance(Base):
    """Series index: one row per occurrence ever generated for a template."""

    __tablename__ = "recurring_task_instances"
    __table_args__ = (
        UniqueConstraint(
            "original_task_id", "occurrence_number", name="uq_recurring_instance_occurrence"
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    original_task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Survives deletion of the generated task so the occurrence is not produced again
    generated_task_id = Column(
        String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    occurrence_number = Column(Integer, nullable=False)
    scheduled_date = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    template = relationship("Task", foreign_keys=[original_task_id])
    generated_task = relationship("Task", foreign_keys=[generated_task_id])
