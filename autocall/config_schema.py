"""Pydantic models describing the structure of `config.yaml`.

The schema keeps operator-facing configuration self-documenting while
providing actionable validation errors when fields are missing or malformed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import phonenumbers
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_DIAL_COMMAND = [
    "adb",
    "shell",
    "am",
    "start",
    "-a",
    "android.intent.action.CALL",
    "-d",
    "tel:{number}",
]


class DefaultsConfig(BaseModel):
    """Top-level defaults shared by the importer and the service."""

    project_name: str = Field("autocall", min_length=1)
    default_region: str = Field("BR", min_length=2, max_length=2)
    ninth_digit_heuristic: bool = True

    model_config = ConfigDict(extra="allow")

    @field_validator("default_region")
    @classmethod
    def _check_region(cls, value: str) -> str:
        region = value.strip().upper()
        if region not in phonenumbers.SUPPORTED_REGIONS:
            raise ValueError(f"Unsupported default_region {value!r}")
        return region


class DialerConfig(BaseModel):
    """How numbers are handed to the phone's dialer."""

    backend: Literal["null", "command"] = "null"
    command: List[str] = Field(default_factory=lambda: list(DEFAULT_DIAL_COMMAND))
    calls_permitted: bool = True
    call_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    command_timeout_seconds: float = Field(15.0, gt=0)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="after")
    def _check_command(self) -> "DialerConfig":
        if self.backend == "command":
            if not self.command:
                raise ValueError("dialer.command must not be empty for the command backend")
            if not any("{number}" in part for part in self.command):
                raise ValueError("dialer.command must contain a {number} placeholder")
        return self


class ConfigModel(BaseModel):
    """Complete Autocall configuration schema."""

    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    dialer: DialerConfig = Field(default_factory=DialerConfig)

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_sections(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned: Dict[str, Any] = dict(values)
        for section in ("defaults", "dialer"):
            if cleaned.get(section) is None:
                cleaned.pop(section, None)
        return cleaned


def resolve_config_path(
    explicit: str | None,
    *,
    allow_example_fallback: bool = False,
    project_root: Path | None = None,
) -> Path:
    """Pick the config file: *explicit*, else ``config.yaml``, else the example if allowed."""

    if explicit:
        return Path(explicit).expanduser().resolve()

    root = project_root or Path(__file__).resolve().parent.parent
    candidates = [root / "config.yaml"]
    if allow_example_fallback:
        candidates.append(root / "config.example.yaml")

    for candidate in candidates:
        if candidate.exists():
            return candidate.resolve()

    raise FileNotFoundError(
        f"No config.yaml under {root}. Point AUTOCALL_CONFIG_PATH at a config file "
        "or set AUTOCALL_ALLOW_CONFIG_EXAMPLE=1 to run with config.example.yaml."
    )
