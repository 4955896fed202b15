"""Process-wide runtime flags (e.g. `reuse`).

Flags come from explicit overrides (the CLI) first, then from the
environment as `APP_HARNESS_<KEY>`.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional

ENV_PREFIX = "APP_HARNESS_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_key(key: str) -> str:
    return ENV_PREFIX + str(key).strip().upper().replace("-", "_")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE_VALUES:
        return True
    if s in _FALSE_VALUES:
        return False
    return True


class RuntimeFlags:
    def __init__(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._overrides = dict(overrides or {})
        self._environ = os.environ if environ is None else environ

    def get_arg_value(self, key: str) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        return self._environ.get(_env_key(key))

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_arg_value(key)
        if value is None:
            return default
        return _as_bool(value)

    @property
    def reuse(self) -> bool:
        """Skip uninstall/install on relaunch."""
        return self.get_bool("reuse")
