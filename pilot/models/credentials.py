"""Credential sources injected into provider adapters.

Token refresh and service-account flows live outside this package; a plugin
can supply any object with an ``api_key()`` method.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol


class CredentialSource(Protocol):
    def api_key(self) -> str | None:
        """Return the key to send with the next request, or None."""
        ...


@dataclass(frozen=True)
class StaticCredentials:
    key: str | None = None

    def api_key(self) -> str | None:
        return self.key


class EnvCredentials:
    """Read the key from the first set environment variable on every call."""

    def __init__(self, *names: str):
        if not names:
            raise ValueError("EnvCredentials needs at least one variable name")
        self.names = names

    def api_key(self) -> str | None:
        for name in self.names:
            value = (os.getenv(name) or "").strip()
            if value:
                return value
        return None

    def __repr__(self) -> str:
        return f"EnvCredentials({', '.join(self.names)})"
