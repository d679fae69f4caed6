"""External storage for delegated sub-agent output."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

from vibesAgent.utils.result import Err, Ok, Result

LOGGER = logging.getLogger(__name__)


class ResultStore(Protocol):
    def write(self, path: str, text: str) -> Result:
        """Store ``text`` at ``path`` and return Ok(location) or Err."""
        ...

    def read(self, path: str) -> Result:
        ...


class FileResultStore:
    """Write results below a workspace root directory.

    Paths are relative to the root; anything resolving outside it is refused.
    """

    def __init__(self, root_dir: Optional[Union[Path, str]] = None):
        if root_dir is None:
            from vibesAgent.config import get_settings

            root_dir = get_settings().workspace.root
        self.root = Path(root_dir)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / path).resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Path escapes result store root: {path}")
        return target

    def write(self, path: str, text: str) -> Result:
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        except (OSError, ValueError) as e:
            LOGGER.warning(f"Failed to write result {path}: {e}")
            return Err(reason=str(e), kind="persistence")
        LOGGER.info(f"Result written: {target}")
        return Ok(path)

    def read(self, path: str) -> Result:
        try:
            return Ok(self._resolve(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Err(reason=f"Result not found: {path}", kind="not_found")
        except (OSError, ValueError) as e:
            return Err(reason=str(e), kind="persistence")
