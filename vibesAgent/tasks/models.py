"""Data model of the task graph."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

TaskStatus = Literal["pending", "blocked", "in_progress", "completed", "failed"]
TaskPriority = Literal["low", "medium", "high", "critical"]

TASK_STATUSES = ("pending", "blocked", "in_progress", "completed", "failed")
PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


class TaskItem(BaseModel):
    """One node of the task graph.

    ``blocks`` and ``blocked_by`` hold task ids only; the store resolves them.
    """

    id: str = Field(default_factory=new_task_id)
    title: str
    description: str = ""
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    completed_at: Optional[str] = None
    blocks: List[str] = Field(default_factory=list)
    blocked_by: List[str] = Field(default_factory=list)
    file_references: List[str] = Field(default_factory=list)
    task_references: List[str] = Field(default_factory=list)
    url_references: List[str] = Field(default_factory=list)
    template_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    complexity: Optional[int] = Field(default=None, ge=1, le=10)
    owner: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TemplateParameter(BaseModel):
    name: str
    description: str = ""
    default: Optional[Any] = None
    required: bool = False


class TaskTemplate(BaseModel):
    """Reusable task recipe.

    ``base_task`` and each entry of ``sub_tasks`` are partial TaskItem field
    maps whose strings may contain ``${param}`` placeholders.
    """

    id: str
    name: str
    description: str = ""
    base_task: Dict[str, Any] = Field(default_factory=dict)
    parameters: List[TemplateParameter] = Field(default_factory=list)
    sub_tasks: List[Dict[str, Any]] = Field(default_factory=list)
    default_file_patterns: List[str] = Field(default_factory=list)


class ExecutionLevel(BaseModel):
    level: int
    tasks: List[TaskItem]
