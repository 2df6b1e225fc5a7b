"""Resolver Port Interface.

Contract: turn a handler/subscriber/middleware key into a live instance, or
None when nothing is registered under that key. The bus never constructs
instances itself; lifetimes are decided entirely by the implementation.
"""
from __future__ import annotations
from typing import Any, Optional, Protocol


class Resolver(Protocol):
    def resolve(self, key: Any) -> Optional[Any]:
        """Return a live instance for `key`, or None on a miss."""
        ...
