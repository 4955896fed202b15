"""Harness config loading.

A harness config file describes the test session (server URL + session id),
the launch behavior and one or more named device configurations:

    session:   {server: "ws://localhost:8099", sessionId: "test"}
    behavior:  {launchApp: auto}
    configurations:
      android.emu.debug:
        type: android.emulator
        binaryPath: app/app-debug.apk

Loading is strict: the file is validated against `HARNESS_CONFIG_SCHEMA`
and every violation is reported at once.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from app_harness.errors import ConfigError

LaunchMode = Literal["auto", "manual"]
LAUNCH_MODES = ("auto", "manual")

_REQUIRED_RE = re.compile(r"^'(.+)' is a required property$")

HARNESS_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["session", "configurations"],
    "properties": {
        "session": {
            "type": "object",
            "required": ["server", "sessionId"],
            "properties": {
                "server": {"type": "string", "minLength": 1},
                "sessionId": {"type": "string", "minLength": 1},
            },
        },
        "behavior": {
            "type": "object",
            "properties": {
                "launchApp": {"enum": list(LAUNCH_MODES)},
            },
        },
        "configurations": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {"$ref": "#/$defs/device"},
        },
    },
    "$defs": {
        "device": {
            "type": "object",
            "required": ["type", "binaryPath"],
            "properties": {
                "type": {"type": "string", "minLength": 1},
                "binaryPath": {"type": "string", "minLength": 1},
                "testBinaryPath": {"type": "string", "minLength": 1},
                "utilBinaryPaths": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                },
                "bundleId": {"type": "string", "minLength": 1},
                "device": {"type": "object"},
            },
        },
    },
}


@dataclass(frozen=True)
class SessionConfig:
    server: str
    session_id: str


@dataclass(frozen=True)
class BehaviorConfig:
    launch_app: LaunchMode = "auto"

    @property
    def is_manual_launch(self) -> bool:
        return self.launch_app == "manual"


@dataclass(frozen=True)
class DeviceConfig:
    type: str
    binary_path: str
    test_binary_path: Optional[str] = None
    util_binary_paths: Tuple[str, ...] = ()
    bundle_id: Optional[str] = None
    device: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HarnessConfig:
    session: SessionConfig
    behavior: BehaviorConfig
    configurations: Dict[str, DeviceConfig]

    def select(self, name: Optional[str] = None) -> DeviceConfig:
        """Return the named device configuration.

        Without a name, the config must contain exactly one configuration.
        """
        if name is None:
            if len(self.configurations) != 1:
                names = ", ".join(sorted(self.configurations))
                raise ConfigError(
                    f"cannot pick a default configuration, choose one of: {names}"
                )
            return next(iter(self.configurations.values()))
        try:
            return self.configurations[name]
        except KeyError:
            names = ", ".join(sorted(self.configurations))
            raise ConfigError(
                f"unknown configuration: {name} (available: {names})"
            ) from None


def _format_error(error: Any, *, where: str) -> str:
    loc = "/".join([str(p) for p in error.path])
    message = error.message
    # One `required` error is raised per missing property.
    m = _REQUIRED_RE.match(message) if error.validator == "required" else None
    if m:
        message = f"{m.group(1)} is missing"
    return f"- {where}:{loc}: {message}"


def validate_harness_config(data: Dict[str, Any], *, where: str) -> None:
    validator = Draft202012Validator(HARNESS_CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        msgs = [_format_error(e, where=where) for e in errors[:20]]
        if len(errors) > 20:
            msgs.append(f"... ({len(errors)-20} more)")
        raise ConfigError("\n".join(msgs))


def parse_device_config(entry: Mapping[str, Any]) -> DeviceConfig:
    return DeviceConfig(
        type=str(entry["type"]),
        binary_path=str(entry["binaryPath"]),
        test_binary_path=entry.get("testBinaryPath"),
        util_binary_paths=tuple(entry.get("utilBinaryPaths") or ()),
        bundle_id=entry.get("bundleId"),
        device=dict(entry.get("device") or {}),
    )


def parse_harness_config(data: Any, *, where: str = "<config>") -> HarnessConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level harness config must be an object: {where}")
    validate_harness_config(data, where=where)

    session = data["session"]
    behavior = data.get("behavior") or {}
    return HarnessConfig(
        session=SessionConfig(server=session["server"], session_id=session["sessionId"]),
        behavior=BehaviorConfig(launch_app=behavior.get("launchApp", "auto")),
        configurations={
            name: parse_device_config(entry) for name, entry in data["configurations"].items()
        },
    )


def load_harness_config(path: Path) -> HarnessConfig:
    """Load and validate a YAML/JSON harness config file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ConfigError(f"Unsupported config file extension: {path}")
    return parse_harness_config(data, where=path.name)
