"""Logging utilities for vibesAgent."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union


def _observability():
    from vibesAgent.config import get_settings

    return get_settings().observability


def setup_logging(
    level: Union[int, str, None] = None,
    log_dir: Optional[Union[str, Path]] = None,
    log_to_file: Optional[bool] = None,
) -> logging.Logger:
    """Setup logging configuration for vibesAgent.

    Unset arguments fall back to ``settings.observability``.

    Args:
        level: Level for the file handler (default: LOG_LEVEL)
        log_dir: Directory for the session log file (default: LOG_DIR)
        log_to_file: Whether to attach the file handler at all (default: LOG_TO_FILE)

    Returns:
        Configured logger instance
    """
    observability = _observability()
    if level is None:
        level = observability.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    if log_to_file is None:
        log_to_file = observability.log_to_file

    logger = logging.getLogger("vibesAgent")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.handlers = []

    log_file = None
    if log_to_file:
        logs_dir = Path(log_dir or observability.log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = logs_dir / f"vibes_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("vibesAgent session started")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def truncate_for_log(value: Any, limit: Optional[int] = None) -> str:
    """Stringify ``value`` and cut it at ``limit`` characters (default: LOG_PROMPT_MAX_LENGTH)."""
    if limit is None:
        limit = _observability().log_prompt_max_length
    text = value if isinstance(value, str) else str(value)
    if len(text) > limit:
        return text[:limit] + "... (truncated)"
    return text


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_name: Name of the tool being called
        args: Tool arguments
    """
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, indent=2, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        result: Tool execution result
        success: Whether the tool executed successfully
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Tool result: {tool_name} - {status}")
    logger.debug(f"  Result: {truncate_for_log(result)}")


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    logger.info(f"Routing decision from {from_node}: → {decision}")
    if reason:
        logger.info(f"  → Reason: {reason}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)
