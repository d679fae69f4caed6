"""Tasks middleware: exposes the task graph engine to the model as tools."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from vibesAgent.tasks.graph import TaskGraph
from vibesAgent.tasks.models import PRIORITY_ORDER, TaskItem, TaskPriority, TaskStatus, TaskTemplate, TemplateParameter
from vibesAgent.tasks.planner import TaskPlanner
from vibesAgent.tasks.templates import BUILTIN_TEMPLATE_IDS

from .base import Middleware

LOGGER = logging.getLogger(__name__)

TASKS_PROMPT = """## Advanced Task Management

You have a task system with dependencies, blocking and execution planning.

### When to use tasks
- Complex multi-step work, especially with parallelizable parts
- Work where some steps must finish before others can start

### Dependencies
- `blocked_by` lists what a task waits for; inside `create_tasks` you may use batch indices ("0", "1")
- Completing a task unblocks dependents whose dependencies are all completed
- Reopening a completed task blocks its dependents again

### Templates
- `feature_dev`: Analysis → Implementation → Tests → Docs
- `bugfix`: Reproduce → Root Cause → Fix → Verify
- `research`: Gather → Analyze → Document

### Workflow
1. For complex work call `create_tasks`, `generate_tasks` or `apply_template` first
2. Call `get_next_tasks` to find available work
3. Mark a task `in_progress` with `update_task`, then `completed` when done
4. Use `get_execution_order` to see which tasks can run in parallel

Status flow: pending → in_progress → completed (blocked while dependencies are open)"""


class TaskDefinition(BaseModel):
    title: str = Field(description="Short task title")
    description: str = Field(default="", description="What needs to be done")
    priority: Optional[TaskPriority] = Field(default=None, description="low | medium | high | critical")
    status: Optional[TaskStatus] = Field(default=None, description="Initial status; derived from dependencies when omitted")
    blocked_by: List[str] = Field(default_factory=list, description="Task ids or batch indices this task waits for")
    tags: List[str] = Field(default_factory=list)
    file_references: List[str] = Field(default_factory=list)
    url_references: List[str] = Field(default_factory=list)
    complexity: Optional[int] = Field(default=None, ge=1, le=10)
    owner: Optional[str] = None


class CreateTasksInput(BaseModel):
    tasks: List[TaskDefinition] = Field(description="Tasks to create, in order")


class UpdateTaskInput(BaseModel):
    task_id: str
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    description: Optional[str] = None
    error: Optional[str] = Field(default=None, description="Failure reason, usually with status=failed")
    owner: Optional[str] = None
    complexity: Optional[int] = Field(default=None, ge=1, le=10)
    add_blocked_by: Optional[List[str]] = None
    remove_blocked_by: Optional[List[str]] = None
    add_tags: Optional[List[str]] = None
    add_file_references: Optional[List[str]] = None
    add_url_references: Optional[List[str]] = None
    add_task_references: Optional[List[str]] = None


class TaskIdInput(BaseModel):
    task_id: str


class ListTasksInput(BaseModel):
    status: Optional[TaskStatus] = None
    tags: Optional[List[str]] = Field(default=None, description="Match tasks carrying any of these tags")
    priority: Optional[TaskPriority] = None
    sort_by: Literal["created", "priority", "updated"] = "created"


class NextTasksInput(BaseModel):
    limit: int = Field(default=5, ge=1, le=50)


class DeleteTaskInput(BaseModel):
    task_id: str
    cascade: bool = Field(default=False, description="Also delete tasks whose only dependency is this task")


class ClearTasksInput(BaseModel):
    confirm: bool = Field(description="Must be true to delete every task")


class GenerateTasksInput(BaseModel):
    goal: str = Field(description="What the tasks should accomplish")
    context: str = Field(default="", description="Extra requirements or constraints")


class EmptyInput(BaseModel):
    pass


class CreateTemplateInput(BaseModel):
    id: str
    name: str
    description: str = ""
    base_task: Dict[str, Any] = Field(description="Partial task fields; strings may use ${param} placeholders")
    parameters: List[TemplateParameter] = Field(default_factory=list)
    sub_tasks: List[Dict[str, Any]] = Field(default_factory=list)
    default_file_patterns: List[str] = Field(default_factory=list)


class ApplyTemplateInput(BaseModel):
    template_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = Field(default=None, description="Overrides the main task title")


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def _summarize_levels(levels) -> str:
    return "\n".join(f"Level {level.level}: {len(level.tasks)} task(s)" for level in levels)


class TasksMiddleware(Middleware):
    """Task graph tools bound to one session's TaskStore."""

    name = "tasks"
    inheritable = False

    def __init__(self, store, model=None):
        super().__init__()
        self.graph = TaskGraph(store)
        self.planner = TaskPlanner(model)
        self._tools = self._build_tools()

    @property
    def tools(self) -> Dict[str, BaseTool]:
        return dict(self._tools)

    def modify_system_prompt(self, prompt: str) -> str:
        return f"{prompt}\n\n{TASKS_PROMPT}"

    def _report(self, tasks: List[TaskItem]) -> None:
        for task in tasks:
            self.writer.task_update(task.id, task.status, task.title)

    def _report_ids(self, task_ids: List[str]) -> None:
        for task_id in task_ids:
            task = self.graph.store.get_task(task_id)
            if task:
                self.writer.task_update(task.id, task.status, task.title)

    def _execution_order(self) -> List[Dict[str, Any]]:
        return [
            {"level": level.level, "tasks": [{"id": t.id, "title": t.title, "status": t.status} for t in level.tasks]}
            for level in self.graph.get_execution_order()
        ]

    def _build_tools(self) -> Dict[str, BaseTool]:
        graph = self.graph

        @tool("create_tasks", args_schema=CreateTasksInput)
        async def create_tasks(tasks: List[TaskDefinition]) -> dict:
            """Create one or more tasks with dependencies.

            blocked_by entries may be task ids or indices of earlier tasks in
            the same call ("0" is the first task). Tasks with open
            dependencies start as blocked.
            """
            definitions = [
                {k: v for k, v in _dump(t).items() if v is not None}
                for t in tasks
            ]
            result = graph.create_tasks(definitions)
            if not result.ok:
                return {"success": False, "error": result.reason}
            self._report(result.value)
            return {
                "success": True,
                "message": f"Created {len(result.value)} task(s)",
                "tasks": [t.model_dump() for t in result.value],
            }

        @tool("update_task", args_schema=UpdateTaskInput)
        async def update_task(
            task_id: str,
            status: Optional[str] = None,
            priority: Optional[str] = None,
            description: Optional[str] = None,
            error: Optional[str] = None,
            owner: Optional[str] = None,
            complexity: Optional[int] = None,
            add_blocked_by: Optional[List[str]] = None,
            remove_blocked_by: Optional[List[str]] = None,
            add_tags: Optional[List[str]] = None,
            add_file_references: Optional[List[str]] = None,
            add_url_references: Optional[List[str]] = None,
            add_task_references: Optional[List[str]] = None,
        ) -> dict:
            """Update a task's status, priority, details, dependencies or references.

            Completing a task unblocks dependents whose dependencies are all
            completed. Moving a completed task back to any other status blocks
            its dependents again.
            """
            current = graph.store.get_task(task_id)
            if current is None:
                return {"success": False, "error": f"Task not found: {task_id}"}

            changes: Dict[str, Any] = {
                key: value
                for key, value in (
                    ("status", status),
                    ("priority", priority),
                    ("description", description),
                    ("error", error),
                    ("owner", owner),
                    ("complexity", complexity),
                )
                if value is not None
            }
            if add_blocked_by or remove_blocked_by:
                blocked_by = [dep for dep in current.blocked_by if dep not in (remove_blocked_by or [])]
                blocked_by += [dep for dep in add_blocked_by or [] if dep not in blocked_by and dep != task_id]
                changes["blocked_by"] = blocked_by
            for field_name, additions in (
                ("tags", add_tags),
                ("file_references", add_file_references),
                ("url_references", add_url_references),
                ("task_references", add_task_references),
            ):
                if additions:
                    merged = list(getattr(current, field_name))
                    merged += [item for item in additions if item not in merged]
                    changes[field_name] = merged

            result = graph.update_task(task_id, changes)
            if not result.ok:
                return {"success": False, "error": result.reason}
            outcome = result.value
            self._report([outcome.task])
            self._report_ids(outcome.unblocked + outcome.reblocked)
            return {
                "success": True,
                "task": outcome.task.model_dump(),
                "unblocked": outcome.unblocked,
                "reblocked": outcome.reblocked,
            }

        @tool("get_task", args_schema=TaskIdInput)
        async def get_task(task_id: str) -> dict:
            """Get a task with the tasks it waits for, the tasks waiting on it, and related tasks sharing a tag."""
            found = graph.get_task(task_id)
            if not found.ok:
                return {"success": False, "error": found.reason}
            task = found.value
            others = [t for t in graph.get_tasks() if t.id != task.id]
            def brief(t):
                return {"id": t.id, "title": t.title, "status": t.status}

            return {
                "success": True,
                "task": task.model_dump(),
                "blocking_tasks": [brief(t) for t in others if t.id in task.blocked_by],
                "blocked_tasks": [brief(t) for t in others if task.id in t.blocked_by],
                "related_tasks": [brief(t) for t in others if set(t.tags) & set(task.tags)],
            }

        @tool("list_tasks", args_schema=ListTasksInput)
        async def list_tasks(
            status: Optional[str] = None,
            tags: Optional[List[str]] = None,
            priority: Optional[str] = None,
            sort_by: str = "created",
        ) -> dict:
            """List tasks filtered by status, tags (any match) or priority, sorted by created, priority or updated."""
            tasks = graph.get_tasks()
            if status:
                tasks = [t for t in tasks if t.status == status]
            if tags:
                tasks = [t for t in tasks if set(t.tags) & set(tags)]
            if priority:
                tasks = [t for t in tasks if t.priority == priority]

            if sort_by == "priority":
                tasks.sort(key=lambda t: PRIORITY_ORDER[t.priority])
            elif sort_by == "updated":
                tasks.sort(key=lambda t: t.updated_at, reverse=True)
            else:
                tasks.sort(key=lambda t: t.created_at, reverse=True)
            return {"success": True, "count": len(tasks), "tasks": [t.model_dump() for t in tasks]}

        @tool("get_next_tasks", args_schema=NextTasksInput)
        async def get_next_tasks(limit: int = 5) -> dict:
            """Get tasks that can be worked on now, highest priority first."""
            available = sorted(graph.get_available_tasks(), key=lambda t: PRIORITY_ORDER[t.priority])
            return {
                "success": True,
                "count": len(available),
                "tasks": [t.model_dump() for t in available[:limit]],
            }

        @tool("delete_task", args_schema=DeleteTaskInput)
        async def delete_task(task_id: str, cascade: bool = False) -> dict:
            """Delete a task. With cascade, tasks whose only dependency is this task are deleted too."""
            result = graph.delete_task(task_id, cascade=cascade)
            if not result.ok:
                return {"success": False, "error": result.reason}
            return {"success": True, "deleted": result.value}

        @tool("clear_tasks", args_schema=ClearTasksInput)
        async def clear_tasks(confirm: bool) -> dict:
            """Delete every task. Requires confirm=true."""
            if not confirm:
                return {"success": False, "error": "Set confirm=true to clear all tasks"}
            result = graph.clear_tasks()
            if not result.ok:
                return {"success": False, "error": result.reason}
            return {"success": True, "message": f"Cleared {result.value} task(s)"}

        @tool("get_execution_order", args_schema=EmptyInput)
        async def get_execution_order() -> dict:
            """Show open tasks grouped into levels; tasks in one level can run in parallel."""
            levels = graph.get_execution_order()
            return {
                "success": True,
                "levels": self._execution_order(),
                "summary": _summarize_levels(levels),
            }

        @tool("generate_tasks", args_schema=GenerateTasksInput)
        async def generate_tasks(goal: str, context: str = "") -> dict:
            """Break a goal down into tasks with dependencies and create them."""
            plan = await self.planner.plan(goal, context, graph.get_tasks(), graph.list_templates())
            result = graph.create_tasks(plan)
            if not result.ok:
                return {"success": False, "error": f"Failed to generate tasks: {result.reason}"}
            self._report(result.value)
            return {
                "success": True,
                "message": f"Generated {len(result.value)} task(s)",
                "tasks": [t.model_dump() for t in result.value],
                "execution_order": self._execution_order(),
            }

        @tool("create_template", args_schema=CreateTemplateInput)
        async def create_template(
            id: str,
            name: str,
            base_task: Dict[str, Any],
            description: str = "",
            parameters: Optional[List[TemplateParameter]] = None,
            sub_tasks: Optional[List[Dict[str, Any]]] = None,
            default_file_patterns: Optional[List[str]] = None,
        ) -> dict:
            """Save a reusable task template. Strings may contain ${param} placeholders."""
            template = TaskTemplate(
                id=id,
                name=name,
                description=description,
                base_task=base_task,
                parameters=[_dump(p) for p in parameters or []],
                sub_tasks=sub_tasks or [],
                default_file_patterns=default_file_patterns or [],
            )
            result = graph.save_template(template)
            if not result.ok:
                return {"success": False, "error": result.reason}
            return {"success": True, "template_id": id}

        @tool("list_templates", args_schema=EmptyInput)
        async def list_templates() -> dict:
            """List built-in and custom task templates."""
            templates = [
                {"id": t.id, "name": t.name, "description": t.description,
                 "parameters": [p.model_dump() for p in t.parameters]}
                for t in graph.list_templates()
            ]
            return {
                "success": True,
                "built_in": [t for t in templates if t["id"] in BUILTIN_TEMPLATE_IDS],
                "custom": [t for t in templates if t["id"] not in BUILTIN_TEMPLATE_IDS],
            }

        @tool("apply_template", args_schema=ApplyTemplateInput)
        async def apply_template(
            template_id: str,
            parameters: Optional[Dict[str, Any]] = None,
            title: Optional[str] = None,
        ) -> dict:
            """Create a main task and a chain of sub-tasks from a template."""
            result = graph.apply_template(template_id, parameters or {}, title)
            if not result.ok:
                return {"success": False, "error": result.reason}
            self._report(result.value)
            return {
                "success": True,
                "message": f"Created {len(result.value)} task(s) from template {template_id}",
                "tasks": [t.model_dump() for t in result.value],
            }

        tools = [
            create_tasks, update_task, get_task, list_tasks, get_next_tasks,
            delete_task, clear_tasks, get_execution_order, generate_tasks,
            create_template, list_templates, apply_template,
        ]
        return {t.name: t for t in tools}
