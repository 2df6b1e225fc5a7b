"""JSON Lines Telemetry adapter.

Implements the Telemetry port by appending structured JSON objects (one per
line) to a sink file. Used by telemetry_middleware to keep a dispatch trail.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional


class JsonlTelemetry:
    _REDACTION_TOKEN = "***REDACTED***"
    _DEFAULT_SECRET_KEYS = frozenset(
        {
            "api_key",
            "api_secret",
            "secret",
            "password",
            "token",
            "auth_token",
        }
    )

    def __init__(
        self,
        sink_path: Path,
        component: Optional[str] = None,
        secret_keys: Iterable[str] = _DEFAULT_SECRET_KEYS,
    ) -> None:
        self._sink_path = sink_path if isinstance(sink_path, Path) else Path(sink_path)
        self._component = component
        self._secret_keys = frozenset(secret_keys)

    @property
    def sink_path(self) -> Path:
        return self._sink_path

    def log(self, event: str, **fields: Any) -> None:
        extras = dict(fields)

        # Tagging telemetry events with their origin; callers may override
        component = extras.pop("component", self._component)

        sanitized_fields, redacted = self._sanitize_fields(extras)

        record: dict[str, Any] = {
            "event": event,
            "ts_utc": int(time.time() * 1000),
            **sanitized_fields,
        }

        if component is not None:
            record["component"] = component
        if redacted:
            record["redacted_fields"] = sorted(redacted)

        self._write_record(record)

    def _sanitize_fields(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], set[str]]:
        sanitized: dict[str, Any] = {}
        redacted: set[str] = set()
        for key, value in fields.items():
            if key in self._secret_keys:
                sanitized[key] = self._REDACTION_TOKEN
                redacted.add(key)
            else:
                sanitized[key] = value

        return sanitized, redacted

    def _write_record(self, record: Mapping[str, Any]) -> None:
        payload = json.dumps(
            record, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
        )
        self._sink_path.parent.mkdir(parents=True, exist_ok=True)
        with self._sink_path.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")
