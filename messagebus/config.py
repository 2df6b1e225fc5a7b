"""
Configuration for the message bus.

BusConfig is an immutable, validated pydantic model. ConfigLoader reads TOML
files; load_bus_config() pulls a single [bus] table out of one.

Example (bus.toml):

    [bus]
    name = "orders"
    duplicate_handlers = "error"
    result_mismatch = "raise"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from messagebus.errors import ConfigurationError

DuplicateHandlerPolicy = Literal["replace", "error"]
ResultMismatchPolicy = Literal["default", "raise"]


class BusConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Used as the logging prefix and the error `component`
    name: str = "messagebus"
    # "replace": last registration wins; "error": raise DuplicateHandlerError
    duplicate_handlers: DuplicateHandlerPolicy = "replace"
    # "default": send_typed returns None on a type mismatch; "raise": ResultTypeMismatch
    result_mismatch: ResultMismatchPolicy = "default"
    # Debug-log every send and publish
    log_dispatch: bool = False

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must be a non-empty string")
        return v

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BusConfig:
        """Validate a raw mapping, raising ConfigurationError on bad input."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid bus configuration: {first.get('msg')}",
                field=field or None,
                value=first.get("input"),
            ) from e


class ConfigLoader:
    """
    Config-loader; loading toml file.
    """

    def __init__(self, base_dir: str | Path = ".") -> None:
        self._base_dir = Path(base_dir)

    def load(self, file_name: str | Path) -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = self._base_dir / path

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            try:
                return tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Malformed TOML in {path}: {e}") from e

    def load_bus_config(self, file_name: str | Path, section: str = "bus") -> BusConfig:
        data = self.load(file_name)
        table = data.get(section, {})
        if not isinstance(table, Mapping):
            raise ConfigurationError(
                f"[{section}] must be a table", field=section, value=type(table).__name__
            )
        return BusConfig.from_mapping(table)


def load_bus_config(file_name: str | Path, section: str = "bus") -> BusConfig:
    """Load a BusConfig from the `section` table of a TOML file."""
    return ConfigLoader().load_bus_config(file_name, section=section)
