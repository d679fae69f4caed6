"""Discriminated success/failure values returned by store and engine operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str
    kind: str = "error"

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[Any], Err]


def not_found(what: str, key: str) -> Err:
    return Err(reason=f"{what} not found: {key}", kind="not_found")
