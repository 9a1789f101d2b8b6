"""Targets - caller-supplied descriptions of one logical API call.

``TargetType`` is structural: any object exposing the members below works.
Classes that subclass it explicitly inherit the defaults for ``sample_data``,
``headers`` and ``validate``.

Usage:
    class UserProfile(TargetType):
        base_url = "https://api.github.com"
        method = Method.GET
        task = RequestPlain()

        def __init__(self, user: str) -> None:
            self.user = user

        @property
        def path(self) -> str:
            return f"/users/{self.user}"
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from api_dispatch.models import Method
from api_dispatch.tasks import RequestPlain, Task


@runtime_checkable
class TargetType(Protocol):
    """Interface every target satisfies."""

    @property
    def base_url(self) -> str:
        """Scheme and host, optionally with a base path."""
        ...

    @property
    def path(self) -> str:
        """Path appended to ``base_url``."""
        ...

    @property
    def method(self) -> Method:
        ...

    @property
    def task(self) -> Task:
        ...

    @property
    def sample_data(self) -> bytes:
        """Body used when the call is stubbed."""
        return b""

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    @property
    def validate(self) -> bool:
        """Whether live calls treat non-2xx statuses as failures."""
        return False


class AuthorizationType(str, Enum):
    """Authorization scheme a target asks AccessTokenPlugin to apply."""

    NONE = "none"
    BASIC = "Basic"
    BEARER = "Bearer"


@dataclass(frozen=True)
class Target:
    """A ready-made target value, used by the CLI and configuration layer."""

    base_url: str
    path: str = ""
    method: Method = Method.GET
    task: Task = RequestPlain()
    sample_data: bytes = b""
    headers: dict[str, str] | None = None
    validate: bool = False
    authorization_type: AuthorizationType = AuthorizationType.NONE

    def __str__(self) -> str:
        return f"{self.method.value} {self.base_url}{self.path}"
