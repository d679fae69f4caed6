"""Built-in task templates seeded into every store."""

from __future__ import annotations

from typing import Dict, List

from .models import TaskTemplate, TemplateParameter

FEATURE_DEV = TaskTemplate(
    id="feature_dev",
    name="Feature Development",
    description="Standard workflow for implementing new features",
    base_task={
        "title": "${featureName}: Feature Development",
        "description": "Implement the ${featureName} feature following best practices",
        "priority": "medium",
        "tags": ["feature", "development"],
    },
    parameters=[
        TemplateParameter(name="featureName", description="Name of the feature to implement", required=True),
    ],
    sub_tasks=[
        {
            "title": "Analyze requirements for ${featureName}",
            "description": "Review requirements, identify edge cases, and plan implementation approach",
            "priority": "high",
            "tags": ["analysis"],
        },
        {
            "title": "Implement ${featureName} core logic",
            "description": "Write the main implementation code for the feature",
            "priority": "high",
            "tags": ["implementation"],
        },
        {
            "title": "Write tests for ${featureName}",
            "description": "Create comprehensive tests covering edge cases",
            "priority": "medium",
            "tags": ["testing"],
        },
        {
            "title": "Document ${featureName}",
            "description": "Add documentation, comments, and usage examples",
            "priority": "low",
            "tags": ["documentation"],
        },
    ],
    default_file_patterns=["src/**/*.py", "tests/**/*.py"],
)

BUGFIX = TaskTemplate(
    id="bugfix",
    name="Bug Fix",
    description="Standard workflow for fixing bugs",
    base_task={
        "title": "${bugDescription}: Bug Fix",
        "description": "Fix the bug: ${bugDescription}",
        "priority": "high",
        "tags": ["bugfix"],
    },
    parameters=[
        TemplateParameter(name="bugDescription", description="Description of the bug to fix", required=True),
    ],
    sub_tasks=[
        {
            "title": "Reproduce the bug",
            "description": "Create a minimal reproduction of the bug to understand the root cause",
            "priority": "high",
            "tags": ["reproduction"],
        },
        {
            "title": "Identify root cause",
            "description": "Analyze the code to find the root cause of the bug",
            "priority": "high",
            "tags": ["analysis"],
        },
        {
            "title": "Implement fix",
            "description": "Write the fix for the identified issue",
            "priority": "high",
            "tags": ["fix"],
        },
        {
            "title": "Verify fix works",
            "description": "Test the fix to ensure it resolves the issue without side effects",
            "priority": "high",
            "tags": ["verification"],
        },
    ],
    default_file_patterns=["src/**/*.py"],
)

RESEARCH = TaskTemplate(
    id="research",
    name="Research Task",
    description="Standard workflow for research and investigation",
    base_task={
        "title": "${topic}: Research",
        "description": "Research and investigate: ${topic}",
        "priority": "medium",
        "tags": ["research"],
    },
    parameters=[
        TemplateParameter(name="topic", description="Topic to research", required=True),
    ],
    sub_tasks=[
        {
            "title": "Gather sources for ${topic}",
            "description": "Collect relevant documentation, code, and resources",
            "priority": "high",
            "tags": ["gathering"],
        },
        {
            "title": "Analyze findings",
            "description": "Analyze the gathered information and extract key insights",
            "priority": "high",
            "tags": ["analysis"],
        },
        {
            "title": "Document findings",
            "description": "Create comprehensive documentation of findings and conclusions",
            "priority": "medium",
            "tags": ["documentation"],
        },
    ],
)

BUILTIN_TEMPLATES: List[TaskTemplate] = [FEATURE_DEV, BUGFIX, RESEARCH]
BUILTIN_TEMPLATE_IDS = frozenset(t.id for t in BUILTIN_TEMPLATES)


def builtin_templates() -> Dict[str, TaskTemplate]:
    """Fresh copies of the built-in templates, keyed by id."""
    return {t.id: t.model_copy(deep=True) for t in BUILTIN_TEMPLATES}
