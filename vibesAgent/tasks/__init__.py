"""Task graph: models, built-in templates and the engine."""

from .graph import TaskGraph, TaskUpdate, substitute
from .models import (
    PRIORITY_ORDER,
    TASK_STATUSES,
    ExecutionLevel,
    TaskItem,
    TaskPriority,
    TaskStatus,
    TaskTemplate,
    TemplateParameter,
)
from .templates import BUILTIN_TEMPLATE_IDS, BUILTIN_TEMPLATES

__all__ = [
    "BUILTIN_TEMPLATES",
    "BUILTIN_TEMPLATE_IDS",
    "ExecutionLevel",
    "PRIORITY_ORDER",
    "TASK_STATUSES",
    "TaskGraph",
    "TaskItem",
    "TaskPriority",
    "TaskStatus",
    "TaskTemplate",
    "TaskUpdate",
    "TemplateParameter",
    "substitute",
]
