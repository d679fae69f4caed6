"""Task graph engine: dependency bookkeeping, leveling and templating.

All reads and writes go through a TaskStore. Edges are task ids and are
resolved against the store on every traversal, so the engine never holds
task objects across calls.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from vibesAgent.utils.result import Err, Ok, Result, not_found

from .models import ExecutionLevel, TaskItem, TaskTemplate, new_task_id, utc_now

LOGGER = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")
_BATCH_INDEX = re.compile(r"^\d+$")

# Fields an update may never touch.
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})
# Template fields that are recomputed for every instantiation.
_TEMPLATE_DERIVED_FIELDS = frozenset({"id", "created_at", "updated_at", "completed_at", "blocks", "status"})


@dataclass
class TaskUpdate:
    """An updated task and the dependents its status change cascaded to."""

    task: TaskItem
    unblocked: List[str] = field(default_factory=list)
    reblocked: List[str] = field(default_factory=list)


def substitute(value: Any, params: Mapping[str, Any]) -> Any:
    """Replace ``${name}`` tokens in every string inside ``value``.

    Unknown names become empty strings.
    """
    if isinstance(value, str):
        def _repl(match):
            found = params.get(match.group(1))
            return "" if found is None else str(found)

        return _PLACEHOLDER.sub(_repl, value)
    if isinstance(value, list):
        return [substitute(item, params) for item in value]
    if isinstance(value, dict):
        return {key: substitute(item, params) for key, item in value.items()}
    return value


def _append_unique(target: List[str], values: Iterable[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)


class TaskGraph:
    """Operations over the tasks and templates of one TaskStore."""

    def __init__(self, store):
        self.store = store

    # ========== Creation ==========

    def create_tasks(self, definitions: Sequence[Mapping[str, Any]]) -> Result:
        """Create a batch of tasks.

        ``blocked_by`` entries that are decimal strings (or ints) inside the
        batch range refer to the task at that position in the same batch.
        Tasks without an explicit status start ``blocked`` when they have
        dependencies, ``pending`` otherwise.
        """
        ids = [new_task_id() for _ in definitions]
        now = utc_now()
        created: List[TaskItem] = []

        for index, definition in enumerate(definitions):
            data = {k: v for k, v in dict(definition).items() if k not in _TEMPLATE_DERIVED_FIELDS}
            blocked_by = []
            for ref in definition.get("blocked_by") or []:
                ref = str(ref)
                if _BATCH_INDEX.match(ref) and int(ref) < len(ids):
                    ref = ids[int(ref)]
                if ref == ids[index]:
                    continue
                if ref not in blocked_by:
                    blocked_by.append(ref)
            data["blocked_by"] = blocked_by

            status = definition.get("status")
            if not status:
                status = "blocked" if blocked_by else "pending"
            try:
                task = TaskItem(
                    **data,
                    id=ids[index],
                    status=status,
                    created_at=now,
                    updated_at=now,
                    completed_at=now if status == "completed" else None,
                )
            except ValidationError as e:
                return Err(reason=f"Invalid task definition at index {index}: {e}", kind="invalid")
            created.append(task)

        by_id = {task.id: task for task in created}
        for task in created:
            for dependency in task.blocked_by:
                if dependency in by_id:
                    _append_unique(by_id[dependency].blocks, [task.id])

        result = self.add_tasks(created)
        if not result.ok:
            return result
        LOGGER.info(f"Created {len(created)} task(s)")
        return Ok(created)

    def add_tasks(self, tasks: Sequence[TaskItem]) -> Result:
        """Store fully-formed tasks as they are, in one store write."""
        result = self.store.put_tasks(list(tasks))
        return Ok(list(tasks)) if result.ok else result

    # ========== Reads ==========

    def get_tasks(self) -> List[TaskItem]:
        return self.store.get_tasks()

    def get_task(self, task_id: str) -> Result:
        task = self.store.get_task(task_id)
        return Ok(task) if task else not_found("Task", task_id)

    def _completed_ids(self, tasks: Iterable[TaskItem]) -> set:
        return {task.id for task in tasks if task.status == "completed"}

    def get_available_tasks(self) -> List[TaskItem]:
        """Pending or in-progress tasks whose dependencies are all completed."""
        tasks = self.store.get_tasks()
        completed = self._completed_ids(tasks)
        return [
            task for task in tasks
            if task.status in ("pending", "in_progress")
            and all(dep in completed for dep in task.blocked_by)
        ]

    # ========== Update ==========

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Result:
        """Merge ``changes`` into a task and cascade status transitions.

        Completing a task moves every blocked dependent whose dependencies
        are now all completed back to ``pending``. Leaving ``completed``
        forces every dependent that is not already blocked to ``blocked``.
        """
        current = self.store.get_task(task_id)
        if current is None:
            return not_found("Task", task_id)

        updates = {k: v for k, v in dict(changes).items() if k not in _IMMUTABLE_FIELDS}
        now = utc_now()
        was_completed = current.status == "completed"

        try:
            updated = TaskItem.model_validate({**current.model_dump(), **updates, "updated_at": now})
        except ValidationError as e:
            return Err(reason=f"Invalid update for task {task_id}: {e}", kind="invalid")

        is_completed = updated.status == "completed"
        if is_completed and not was_completed:
            updated.completed_at = now
        elif not is_completed:
            updated.completed_at = None

        touched = [updated]
        if "blocked_by" in updates:
            touched.extend(self._sync_inverse_edges(current, updated))

        result = self.store.put_tasks(touched)
        if not result.ok:
            return result

        outcome = TaskUpdate(task=updated)
        if is_completed and not was_completed:
            outcome.unblocked = self._unblock_dependents(task_id)
        elif was_completed and not is_completed:
            outcome.reblocked = self._reblock_dependents(task_id)
        return Ok(outcome)

    def _sync_inverse_edges(self, before: TaskItem, after: TaskItem) -> List[TaskItem]:
        changed = []
        added = [dep for dep in after.blocked_by if dep not in before.blocked_by]
        removed = [dep for dep in before.blocked_by if dep not in after.blocked_by]
        for dep_id in added:
            dep = self.store.get_task(dep_id)
            if dep and after.id not in dep.blocks:
                dep.blocks.append(after.id)
                changed.append(dep)
        for dep_id in removed:
            dep = self.store.get_task(dep_id)
            if dep and after.id in dep.blocks:
                dep.blocks.remove(after.id)
                changed.append(dep)
        return changed

    def _unblock_dependents(self, task_id: str) -> List[str]:
        tasks = self.store.get_tasks()
        completed = self._completed_ids(tasks)
        now = utc_now()
        unblocked = []
        for task in tasks:
            if (
                task.status == "blocked"
                and task_id in task.blocked_by
                and all(dep in completed for dep in task.blocked_by)
            ):
                task.status = "pending"
                task.updated_at = now
                unblocked.append(task)
        if unblocked:
            self._persist_cascade(unblocked, "unblock")
            LOGGER.info(f"Completing {task_id} unblocked {[t.id for t in unblocked]}")
        return [t.id for t in unblocked]

    def _reblock_dependents(self, task_id: str) -> List[str]:
        now = utc_now()
        reblocked = []
        for task in self.store.get_tasks():
            if task_id in task.blocked_by and task.status != "blocked":
                task.status = "blocked"
                task.completed_at = None
                task.updated_at = now
                reblocked.append(task)
        if reblocked:
            self._persist_cascade(reblocked, "reblock")
            LOGGER.info(f"Reopening {task_id} reblocked {[t.id for t in reblocked]}")
        return [t.id for t in reblocked]

    def _persist_cascade(self, tasks: List[TaskItem], kind: str) -> None:
        result = self.store.put_tasks(tasks)
        if not result.ok:
            LOGGER.warning(f"{kind} cascade could not be persisted: {result.reason}")

    # ========== Deletion ==========

    def delete_task(self, task_id: str, cascade: bool = False) -> Result:
        """Delete a task and strip it from the remaining edges.

        With ``cascade`` every task whose only dependency is ``task_id`` is
        deleted too (one level deep).
        """
        tasks = self.store.get_tasks()
        if not any(task.id == task_id for task in tasks):
            return not_found("Task", task_id)

        doomed = [task_id]
        if cascade:
            doomed.extend(task.id for task in tasks if task.blocked_by == [task_id])

        survivors = []
        for task in tasks:
            if task.id in doomed:
                continue
            kept_deps = [dep for dep in task.blocked_by if dep not in doomed]
            kept_blocks = [dep for dep in task.blocks if dep not in doomed]
            if kept_deps != task.blocked_by or kept_blocks != task.blocks:
                task.blocked_by = kept_deps
                task.blocks = kept_blocks
                task.updated_at = utc_now()
                survivors.append(task)

        result = self.store.remove_tasks(doomed)
        if not result.ok:
            return result
        if survivors:
            result = self.store.put_tasks(survivors)
            if not result.ok:
                return result
        LOGGER.info(f"Deleted task(s) {doomed}")
        return Ok(doomed)

    def clear_tasks(self) -> Result:
        return self.store.clear_tasks()

    # ========== Leveling ==========

    def get_execution_order(self) -> List[ExecutionLevel]:
        """Group open tasks into levels of mutually independent work.

        Tasks that never reach in-degree zero (cycles, missing dependencies)
        or that are persisted as ``blocked`` with nothing left to wait for
        are returned together as one trailing level.
        """
        tasks = self.store.get_tasks()
        completed = self._completed_ids(tasks)
        pending = [task for task in tasks if task.status not in ("completed", "failed")]
        pending_ids = {task.id for task in pending}

        in_degree: Dict[str, int] = {}
        dependents: Dict[str, List[str]] = {task.id: [] for task in pending}
        for task in pending:
            in_degree[task.id] = sum(1 for dep in task.blocked_by if dep not in completed)
            for dep in task.blocked_by:
                if dep in pending_ids:
                    dependents[dep].append(task.id)

        by_id = {task.id: task for task in pending}
        levels: List[ExecutionLevel] = []
        assigned = set()
        current = [
            task.id for task in pending
            if in_degree[task.id] == 0 and task.status != "blocked"
        ]

        while current:
            levels.append(ExecutionLevel(level=len(levels), tasks=[by_id[i] for i in current]))
            assigned.update(current)
            following = []
            for task_id in current:
                for dependent in dependents[task_id]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0 and dependent not in assigned:
                        following.append(dependent)
            current = following

        leftover = [task for task in pending if task.id not in assigned]
        if leftover:
            levels.append(ExecutionLevel(level=len(levels), tasks=leftover))
        return levels

    # ========== Templates ==========

    def save_template(self, template: TaskTemplate) -> Result:
        return self.store.save_template(template)

    def get_template(self, template_id: str) -> Result:
        template = self.store.get_template(template_id)
        return Ok(template) if template else not_found("Template", template_id)

    def list_templates(self) -> List[TaskTemplate]:
        return self.store.list_templates()

    def delete_template(self, template_id: str) -> Result:
        return self.store.remove_template(template_id)

    def apply_template(
        self,
        template_id: str,
        params: Optional[Mapping[str, Any]] = None,
        title: Optional[str] = None,
    ) -> Result:
        """Instantiate a template as a main task followed by a chain of sub-tasks.

        Sub-task 0 waits on the main task and every later sub-task waits on
        the one before it. All created tasks are written in one store call.
        """
        template = self.store.get_template(template_id)
        if template is None:
            return not_found("Template", template_id)

        values = {p.name: p.default for p in template.parameters if p.default is not None}
        values.update(params or {})
        now = utc_now()

        base = substitute(
            {k: v for k, v in template.base_task.items() if k not in _TEMPLATE_DERIVED_FIELDS},
            values,
        )
        base.pop("template_id", None)
        base_blocked_by = list(base.pop("blocked_by", None) or [])
        base_title = base.pop("title", None)
        try:
            main = TaskItem(
                **base,
                id=new_task_id(),
                title=title or base_title or f"{template_id} Task",
                status="blocked" if base_blocked_by else "pending",
                blocked_by=base_blocked_by,
                template_id=template_id,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            return Err(reason=f"Template {template_id} has an invalid base task: {e}", kind="invalid")

        created = [main]
        previous = main
        for position, sub_definition in enumerate(template.sub_tasks):
            sub = substitute(
                {k: v for k, v in sub_definition.items() if k not in _TEMPLATE_DERIVED_FIELDS},
                values,
            )
            sub.pop("blocked_by", None)
            sub.pop("template_id", None)
            try:
                task = TaskItem(
                    **{"title": f"{main.title} step {position + 1}", **sub},
                    id=new_task_id(),
                    status="blocked",
                    blocked_by=[previous.id],
                    template_id=template_id,
                    created_at=now,
                    updated_at=now,
                )
            except ValidationError as e:
                return Err(reason=f"Template {template_id} has an invalid sub-task {position}: {e}", kind="invalid")
            main.blocks.append(task.id)
            if previous is not main:
                previous.blocks.append(task.id)
            created.append(task)
            previous = task

        for task in created:
            _append_unique(task.file_references, template.default_file_patterns)

        result = self.add_tasks(created)
        if not result.ok:
            return result
        LOGGER.info(f"Applied template {template_id}: {len(created)} task(s)")
        return Ok(created)
