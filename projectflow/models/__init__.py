from projectflow.models.project import Project
from projectflow.models.task import RecurringTaskInstance, Task

__all__ = [
    "Project",
    "Task",
    "RecurringTaskInstance",
]
