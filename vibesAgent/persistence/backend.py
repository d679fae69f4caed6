"""Session-scoped storage for agent state, tasks and templates."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from langchain_core.messages import BaseMessage

from vibesAgent.tasks.models import TaskItem, TaskTemplate
from vibesAgent.tasks.templates import BUILTIN_TEMPLATE_IDS, builtin_templates
from vibesAgent.utils.result import Err, Ok, Result, not_found

from .state import AgentState

LOGGER = logging.getLogger(__name__)

_STATE_FIELDS = frozenset(AgentState.model_fields)


class TaskStore(Protocol):
    """Storage contract the task graph engine runs against.

    Reads return copies. Writes return ``Ok`` or ``Err`` and never raise for
    missing keys.
    """

    session_id: str

    def get_tasks(self) -> List[TaskItem]:
        ...

    def get_task(self, task_id: str) -> Optional[TaskItem]:
        ...

    def put_tasks(self, tasks: Sequence[TaskItem]) -> Result:
        """Insert or replace all ``tasks`` in one write."""
        ...

    def remove_tasks(self, task_ids: Iterable[str]) -> Result:
        ...

    def clear_tasks(self) -> Result:
        ...

    def get_template(self, template_id: str) -> Optional[TaskTemplate]:
        ...

    def list_templates(self) -> List[TaskTemplate]:
        ...

    def save_template(self, template: TaskTemplate) -> Result:
        ...

    def remove_template(self, template_id: str) -> Result:
        ...


class StateBackend:
    """In-memory store for one session.

    Holds the AgentState (messages, tasks, todos, metadata, summary) and the
    template catalogue. Built-in templates are seeded on construction.
    """

    def __init__(self, session_id: str = "default", state: Optional[AgentState] = None):
        self.session_id = session_id
        self._state = state.model_copy(deep=True) if state else AgentState()
        self._templates: Dict[str, TaskTemplate] = builtin_templates()

    # ========== State ==========

    def get_state(self) -> AgentState:
        return self._state.model_copy(deep=True)

    def update_state(self, **changes) -> Result:
        """Replace top-level AgentState fields."""
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            return Err(reason=f"Unknown state fields: {sorted(unknown)}", kind="invalid")
        try:
            self._state = AgentState.model_validate({**dict(self._state), **changes})
        except ValueError as e:
            LOGGER.warning(f"[{self.session_id}] state update rejected: {e}")
            return Err(reason=str(e), kind="invalid")
        return Ok(None)

    def append_messages(self, messages: Sequence[BaseMessage]) -> Result:
        self._state.messages.extend(messages)
        return Ok(len(self._state.messages))

    def replace_state(self, state: AgentState) -> Result:
        self._state = state.model_copy(deep=True)
        return Ok(None)

    # ========== Tasks ==========

    def get_tasks(self) -> List[TaskItem]:
        return [task.model_copy(deep=True) for task in self._state.tasks.values()]

    def get_task(self, task_id: str) -> Optional[TaskItem]:
        task = self._state.tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def put_tasks(self, tasks: Sequence[TaskItem]) -> Result:
        for task in tasks:
            self._state.tasks[task.id] = task.model_copy(deep=True)
        return Ok([task.id for task in tasks])

    def remove_tasks(self, task_ids: Iterable[str]) -> Result:
        removed = []
        for task_id in task_ids:
            if self._state.tasks.pop(task_id, None) is not None:
                removed.append(task_id)
        return Ok(removed)

    def clear_tasks(self) -> Result:
        count = len(self._state.tasks)
        self._state.tasks = {}
        return Ok(count)

    # ========== Templates ==========

    def get_template(self, template_id: str) -> Optional[TaskTemplate]:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    def list_templates(self) -> List[TaskTemplate]:
        return [t.model_copy(deep=True) for t in self._templates.values()]

    def save_template(self, template: TaskTemplate) -> Result:
        if template.id in BUILTIN_TEMPLATE_IDS:
            return Err(reason=f"Cannot overwrite built-in template: {template.id}", kind="invalid")
        self._templates[template.id] = template.model_copy(deep=True)
        return Ok(template.id)

    def remove_template(self, template_id: str) -> Result:
        if template_id in BUILTIN_TEMPLATE_IDS:
            return Err(reason="Cannot delete built-in templates", kind="invalid")
        if self._templates.pop(template_id, None) is None:
            return not_found("Template", template_id)
        return Ok(template_id)


class SessionBackends:
    """Hands out one StateBackend per session id."""

    def __init__(self):
        self._backends: Dict[str, StateBackend] = {}

    def get(self, session_id: str) -> StateBackend:
        backend = self._backends.get(session_id)
        if backend is None:
            backend = StateBackend(session_id=session_id)
            self._backends[session_id] = backend
            LOGGER.info(f"Created state backend for session {session_id}")
        return backend

    def drop(self, session_id: str) -> bool:
        return self._backends.pop(session_id, None) is not None

    def list_sessions(self) -> List[str]:
        return list(self._backends)
