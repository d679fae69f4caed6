"""JSON snapshots of a session's AgentState."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from langchain_core.messages import messages_from_dict, messages_to_dict
from pydantic import ValidationError

from vibesAgent.utils.result import Err, Ok, Result

from .state import AgentState

LOGGER = logging.getLogger(__name__)


def dump_state(state: AgentState) -> dict:
    data = state.model_dump(mode="json", exclude={"messages"})
    data["messages"] = messages_to_dict(state.messages)
    return data


def restore_state(data: dict) -> AgentState:
    payload = dict(data)
    messages = messages_from_dict(payload.pop("messages", []))
    return AgentState.model_validate({**payload, "messages": messages})


def save_snapshot(backend, path: Union[Path, str]) -> Result:
    """Write ``backend``'s state to ``path``."""
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps(dump_state(backend.get_state()), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    except (OSError, TypeError) as e:
        LOGGER.warning(f"Snapshot save failed for session {backend.session_id}: {e}")
        return Err(reason=str(e), kind="persistence")
    LOGGER.info(f"Saved snapshot of session {backend.session_id} to {target}")
    return Ok(str(target))


def load_snapshot(path: Union[Path, str]) -> Result:
    """Read an AgentState previously written by save_snapshot."""
    source = Path(path)
    if not source.exists():
        return Err(reason=f"Snapshot not found: {source}", kind="not_found")
    try:
        return Ok(restore_state(json.loads(source.read_text(encoding="utf-8"))))
    except (OSError, ValueError, ValidationError) as e:
        LOGGER.warning(f"Snapshot load failed from {source}: {e}")
        return Err(reason=str(e), kind="persistence")
