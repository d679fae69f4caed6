"""Session state owned by the store."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from vibesAgent.tasks.models import TaskItem


class AgentState(BaseModel):
    """Everything a session persists between invocations.

    ``tasks`` is keyed by task id and keeps insertion order.
    """

    messages: List[BaseMessage] = Field(default_factory=list)
    tasks: Dict[str, TaskItem] = Field(default_factory=dict)
    todos: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
