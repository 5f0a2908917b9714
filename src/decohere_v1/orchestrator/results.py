from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Tuple, TypeVar, Union

from ..errors import DecohereError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retry:
    reason: str
    feedback: str
    errors: Tuple[str, ...] = ()
    infeasible: bool = False


@dataclass(frozen=True)
class Fatal:
    error: DecohereError


StepResult = Union[Ok[T], Fatal]
RetryableResult = Union[Ok[T], Retry]
