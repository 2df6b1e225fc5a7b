"""Telemetry Port Interface.

Contract: log structured events (one call per dispatch outcome).
"""
from __future__ import annotations
from typing import Protocol, Any

class Telemetry(Protocol):
    def log(self, event: str, **fields: Any) -> None: ...
