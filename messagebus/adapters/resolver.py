"""
Mapping-backed Resolver.

A minimal implementation of the Resolver port for tests and small
applications. Keys map either to a fixed instance (same object on every
resolve) or to a zero-argument factory (fresh object on every resolve).
Anything richer (scopes, disposal, auto-wiring) belongs to a real DI layer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ServiceResolver:
    """Resolve keys to instances from explicit registrations."""

    def __init__(self) -> None:
        self._instances: dict[Any, Any] = {}
        self._factories: dict[Any, Callable[[], Any]] = {}

    def add_instance(self, key: Any, instance: Any) -> ServiceResolver:
        """Always resolve `key` to `instance`."""
        self._factories.pop(key, None)
        self._instances[key] = instance
        return self

    def add_factory(self, key: Any, factory: Callable[[], Any]) -> ServiceResolver:
        """Resolve `key` by calling `factory()` on every lookup."""
        if not callable(factory):
            raise TypeError(f"factory for {key!r} must be callable")
        self._instances.pop(key, None)
        self._factories[key] = factory
        return self

    def add_type(self, cls: type) -> ServiceResolver:
        """Shorthand: key is the class, a new instance per resolve."""
        return self.add_factory(cls, cls)

    def remove(self, key: Any) -> None:
        self._instances.pop(key, None)
        self._factories.pop(key, None)

    def resolve(self, key: Any) -> Optional[Any]:
        if key in self._instances:
            return self._instances[key]
        factory = self._factories.get(key)
        if factory is None:
            logger.debug(f"No registration for {key!r}")
            return None
        return factory()

    def __contains__(self, key: Any) -> bool:
        return key in self._instances or key in self._factories

    def __len__(self) -> int:
        return len(self._instances) + len(self._factories)
