"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest

from vibesAgent.persistence.backend import StateBackend


@pytest.fixture
def backend():
    """Fresh in-memory session store."""
    return StateBackend(session_id="test-session")


@pytest.fixture
def events():
    """List collecting stream events; pass ``events.append`` as a sink."""
    return []
