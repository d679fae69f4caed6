"""Configuration helpers."""

from .settings import (
    AgentSettings,
    ObservabilitySettings,
    Settings,
    WorkspaceSettings,
    get_settings,
)

__all__ = [
    "AgentSettings",
    "ObservabilitySettings",
    "Settings",
    "WorkspaceSettings",
    "get_settings",
]
