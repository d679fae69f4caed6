"""
Unit tests for task templates and placeholder substitution.
"""

import pytest

from vibesAgent.persistence.backend import StateBackend
from vibesAgent.tasks.graph import TaskGraph, substitute
from vibesAgent.tasks.models import TaskTemplate, TemplateParameter


@pytest.fixture
def graph():
    return TaskGraph(StateBackend(session_id="template-test"))


class TestSubstitute:
    """Tests for ${param} replacement."""

    def test_nested_values(self):
        """Strings inside lists and dicts are substituted, other values kept."""
        value = {"title": "${name}!", "tags": ["${name}", "x"], "complexity": 3}

        assert substitute(value, {"name": "login"}) == {"title": "login!", "tags": ["login", "x"], "complexity": 3}

    def test_missing_parameter_becomes_empty(self):
        assert substitute("${missing}: Bug Fix", {}) == ": Bug Fix"

    def test_non_string_parameter(self):
        assert substitute("v${n}", {"n": 2}) == "v2"


class TestApplyTemplate:
    """Tests for apply_template."""

    def test_bugfix_template(self, graph):
        """The bugfix template creates a main task and a chain of four sub-tasks."""
        result = graph.apply_template("bugfix", {"bugDescription": "Null pointer on save"})

        assert result.ok
        main, *subs = result.value
        assert main.title == "Null pointer on save: Bug Fix"
        assert main.status == "pending"
        assert main.blocked_by == []
        assert main.template_id == "bugfix"
        assert [s.title for s in subs] == ["Reproduce the bug", "Identify root cause", "Implement fix", "Verify fix works"]

        previous = main
        for sub in subs:
            assert sub.status == "blocked"
            assert sub.blocked_by == [previous.id]
            previous = sub
        assert main.blocks == [s.id for s in subs]
        assert subs[0].blocks == [subs[1].id]
        assert subs[-1].blocks == []

    def test_default_file_patterns_on_every_task(self, graph):
        """Template file patterns are attached to the main task and each sub-task."""
        tasks = graph.apply_template("feature_dev", {"featureName": "Export"}).value

        assert len(tasks) == 5
        for task in tasks:
            assert task.file_references == ["src/**/*.py", "tests/**/*.py"]
        assert tasks[1].title == "Analyze requirements for Export"

    def test_all_tasks_are_stored(self, graph):
        tasks = graph.apply_template("research", {"topic": "caching"}).value

        assert {t.id for t in graph.get_tasks()} == {t.id for t in tasks}

    def test_title_override(self, graph):
        tasks = graph.apply_template("bugfix", {"bugDescription": "x"}, title="Hotfix").value

        assert tasks[0].title == "Hotfix"

    def test_missing_parameter(self, graph):
        """Unsupplied parameters are substituted with empty strings."""
        tasks = graph.apply_template("bugfix", {}).value

        assert tasks[0].title == ": Bug Fix"

    def test_parameter_defaults(self, graph):
        """Declared defaults fill parameters the caller leaves out."""
        graph.save_template(TaskTemplate(
            id="release",
            name="Release",
            base_task={"title": "Release ${version}", "priority": "high"},
            parameters=[TemplateParameter(name="version", default="1.0")],
            sub_tasks=[{"title": "Tag ${version}"}],
        ))

        main, sub = graph.apply_template("release").value

        assert main.title == "Release 1.0"
        assert main.priority == "high"
        assert sub.title == "Tag 1.0"

    def test_base_task_with_dependencies_starts_blocked(self, graph):
        (dep,) = graph.create_tasks([{"title": "Prep"}]).value
        graph.save_template(TaskTemplate(id="after", name="After", base_task={"title": "Then", "blocked_by": [dep.id]}))

        (main,) = graph.apply_template("after").value

        assert main.status == "blocked"
        assert main.blocked_by == [dep.id]

    def test_unknown_template(self, graph):
        result = graph.apply_template("nope", {})

        assert not result.ok
        assert result.kind == "not_found"
        assert graph.get_tasks() == []


class TestTemplateCatalogue:
    """Tests for saving, listing and deleting templates."""

    def test_builtins_are_listed(self, graph):
        ids = {t.id for t in graph.list_templates()}

        assert {"feature_dev", "bugfix", "research"} <= ids

    def test_builtins_cannot_be_deleted(self, graph):
        result = graph.delete_template("bugfix")

        assert not result.ok
        assert "built-in" in result.reason
        assert graph.get_template("bugfix").ok

    def test_builtins_cannot_be_overwritten(self, graph):
        result = graph.save_template(TaskTemplate(id="bugfix", name="Mine"))

        assert not result.ok
        assert graph.get_template("bugfix").value.name == "Bug Fix"

    def test_custom_template_lifecycle(self, graph):
        graph.save_template(TaskTemplate(id="custom", name="Custom"))
        assert graph.get_template("custom").ok

        assert graph.delete_template("custom").ok
        assert graph.get_template("custom").kind == "not_found"

    def test_delete_unknown_template(self, graph):
        assert graph.delete_template("ghost").kind == "not_found"

    def test_stored_builtins_are_copies(self, graph):
        """Mutating a returned template does not change the catalogue."""
        template = graph.get_template("bugfix").value
        template.sub_tasks.clear()

        assert len(graph.get_template("bugfix").value.sub_tasks) == 4
