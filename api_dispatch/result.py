"""Success/failure envelope shared by request mapping and dispatch outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    """A successful outcome carrying its value."""

    value: Any

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A failed outcome carrying the error (a DispatchError for dispatch results)."""

    error: Any

    @property
    def is_success(self) -> bool:
        return False


Result = Union[Success, Failure]
