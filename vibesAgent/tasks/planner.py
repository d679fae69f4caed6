"""Turn a free-form goal into task definitions for ``TaskGraph.create_tasks``."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import HumanMessage

from vibesAgent.graph.message_utils import message_text

from .models import TaskItem, TaskTemplate

LOGGER = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = "You are a task planning expert. You answer with JSON only."

PLANNING_PROMPT = """Generate a structured task breakdown for the following goal.

GOAL:
{goal}

ADDITIONAL CONTEXT:
{context}

EXISTING TASKS (reference them by id as dependencies):
{existing}

AVAILABLE TEMPLATES:
{templates}

Respond with JSON only, no markdown:
{{
  "analysis": "Brief analysis of what needs to be done",
  "tasks": [
    {{
      "title": "Task title",
      "description": "Detailed description",
      "priority": "low|medium|high|critical",
      "blocked_by": ["index of an earlier task in this list, or an existing task id"],
      "tags": ["tag"],
      "file_references": ["file patterns"],
      "complexity": 1
    }}
  ]
}}

Rules:
1. Break the work into logical, sequential steps
2. Use blocked_by for real dependencies only, so independent work can run in parallel
3. Give critical-path items higher priority
4. Keep descriptions clear and actionable"""

_ALLOWED_KEYS = ("title", "description", "priority", "blocked_by", "tags", "file_references", "complexity")
_PRIORITIES = ("low", "medium", "high", "critical")


def _chain(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    for index, step in enumerate(steps):
        step["blocked_by"] = [str(index - 1)] if index else []
    return steps


def heuristic_plan(goal: str) -> List[Dict[str, Any]]:
    """Keyword-driven fallback plan: a bug fix, research, or feature chain."""
    lowered = goal.lower()

    if any(word in lowered for word in ("bug", "fix", "error")):
        return _chain([
            {"title": "Reproduce the bug", "description": f"Create a minimal reproduction of the issue described: {goal}",
             "priority": "high", "tags": ["reproduction", "bugfix"], "complexity": 3},
            {"title": "Identify root cause", "description": "Analyze the code to find the root cause of the bug",
             "priority": "high", "tags": ["analysis", "bugfix"], "file_references": ["src/**/*.py"], "complexity": 5},
            {"title": "Implement fix", "description": "Write the fix for the identified issue",
             "priority": "high", "tags": ["fix", "bugfix"], "file_references": ["src/**/*.py"], "complexity": 4},
            {"title": "Verify fix", "description": "Test the fix to ensure it resolves the issue without side effects",
             "priority": "high", "tags": ["verification", "testing"], "file_references": ["tests/**/*.py"], "complexity": 3},
        ])

    if any(word in lowered for word in ("research", "investigate", "find")):
        return _chain([
            {"title": "Gather sources", "description": f"Collect relevant documentation and resources for: {goal}",
             "priority": "high", "tags": ["gathering", "research"], "complexity": 3},
            {"title": "Analyze findings", "description": "Analyze the gathered information and extract key insights",
             "priority": "high", "tags": ["analysis", "research"], "complexity": 4},
            {"title": "Document findings", "description": "Create comprehensive documentation of findings and conclusions",
             "priority": "medium", "tags": ["documentation", "research"], "complexity": 3},
        ])

    return _chain([
        {"title": "Analyze requirements", "description": f"Review and analyze requirements for: {goal}",
         "priority": "high", "tags": ["analysis", "feature"], "complexity": 3},
        {"title": "Implement core logic", "description": "Implement the main functionality",
         "priority": "high", "tags": ["implementation", "feature"], "file_references": ["src/**/*.py"], "complexity": 5},
        {"title": "Write tests", "description": "Create comprehensive tests covering edge cases",
         "priority": "medium", "tags": ["testing", "feature"], "file_references": ["tests/**/*.py"], "complexity": 4},
        {"title": "Update documentation", "description": "Add documentation and usage examples",
         "priority": "low", "tags": ["documentation", "feature"], "file_references": ["README.md", "docs/**/*.md"], "complexity": 2},
    ])


def parse_plan(text: str) -> List[Dict[str, Any]]:
    """Extract task definitions from a model reply.

    Raises ValueError when no usable JSON plan is found.
    """
    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in planner reply")
    data = json.loads(cleaned[start:end + 1])
    raw_tasks = data.get("tasks") if isinstance(data, dict) else None
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise ValueError("planner reply has no tasks")

    plan = []
    for raw in raw_tasks:
        if not isinstance(raw, dict) or not raw.get("title"):
            raise ValueError(f"invalid task entry: {raw!r}")
        entry = {key: raw[key] for key in _ALLOWED_KEYS if raw.get(key) is not None}
        if entry.get("priority") not in _PRIORITIES:
            entry.pop("priority", None)
        complexity = entry.get("complexity")
        if not isinstance(complexity, int) or not 1 <= complexity <= 10:
            entry.pop("complexity", None)
        entry["blocked_by"] = [str(ref) for ref in entry.get("blocked_by") or []]
        plan.append(entry)
    return plan


class TaskPlanner:
    """Ask the model for a plan and fall back to heuristics when that fails."""

    def __init__(self, model=None):
        self.model = model

    async def plan(
        self,
        goal: str,
        context: str = "",
        existing: Sequence[TaskItem] = (),
        templates: Sequence[TaskTemplate] = (),
    ) -> List[Dict[str, Any]]:
        if self.model is None:
            return heuristic_plan(goal)

        prompt = PLANNING_PROMPT.format(
            goal=goal,
            context=context or "(none)",
            existing="\n".join(f"- {t.id}: {t.title} ({t.status})" for t in existing) or "(none)",
            templates="\n".join(f"- {t.id}: {t.name} - {t.description}" for t in templates) or "(none)",
        )
        try:
            turn = await self.model.generate(PLANNER_SYSTEM_PROMPT, [HumanMessage(content=prompt)], [])
            return parse_plan(message_text(turn.message))
        except Exception as e:
            LOGGER.warning(f"Model task planning failed, using heuristic plan: {e}")
            return heuristic_plan(goal)
