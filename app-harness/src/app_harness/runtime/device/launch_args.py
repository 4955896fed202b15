"""Prebaked launch args, set ahead of time and merged into every launch."""

from __future__ import annotations

import copy
from types import MappingProxyType
from typing import Any, Dict, Mapping


class _Absent:
    """Sentinel for "no value": setting a key to it clears the key."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


class LaunchArgsStore:
    def __init__(self) -> None:
        self._args: Dict[str, Any] = {}

    def set(self, key: str, value: Any = ABSENT) -> None:
        if value is ABSENT or value is None:
            self.clear(key)
            return
        self._args[str(key)] = value

    def clear(self, key: str) -> None:
        self._args.pop(str(key), None)

    def snapshot(self) -> Mapping[str, Any]:
        return MappingProxyType(copy.deepcopy(self._args))

    def __contains__(self, key: object) -> bool:
        return key in self._args

    def __len__(self) -> int:
        return len(self._args)
