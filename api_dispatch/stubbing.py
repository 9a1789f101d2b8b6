"""Stub behaviours - whether and when a dispatch is answered by its sample response.

A stub closure maps a target to one of the variants below. ``Never`` sends the
request over the transport; the other two only govern when the synthesized
outcome is delivered.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from api_dispatch.target import TargetType


@dataclass(frozen=True)
class Never:
    """Do not stub."""


@dataclass(frozen=True)
class Immediate:
    """Deliver the sample response without delay."""


@dataclass(frozen=True)
class Delayed:
    """Deliver the sample response after ``seconds``."""

    seconds: float

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"Stub delay must be non-negative, got {self.seconds}")


StubBehavior = Union[Never, Immediate, Delayed]
StubClosure = Callable[["TargetType"], StubBehavior]

NEVER = Never()
IMMEDIATE = Immediate()


def never_stub(_target: TargetType) -> StubBehavior:
    return NEVER


def immediately_stub(_target: TargetType) -> StubBehavior:
    return IMMEDIATE


def delayed_stub(seconds: float) -> StubClosure:
    """Stub closure answering every target after ``seconds``."""
    behavior = Delayed(seconds)

    def closure(_target: TargetType) -> StubBehavior:
        return behavior

    return closure


def is_stub_behavior(value: object) -> bool:
    return isinstance(value, (Never, Immediate, Delayed))
