"""Model capability contract."""

from .capability import (
    ChatModelAdapter,
    ModelCapability,
    ModelTurn,
    StreamingModelCapability,
    add_usage,
    merge_chunks,
    usage_of,
)

__all__ = [
    "ChatModelAdapter",
    "ModelCapability",
    "ModelTurn",
    "StreamingModelCapability",
    "add_usage",
    "merge_chunks",
    "usage_of",
]
