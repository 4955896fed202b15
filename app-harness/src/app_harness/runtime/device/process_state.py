"""Bookkeeping for the app process started on one device."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Unstarted:
    def is_running(self, bundle_id: Optional[str] = None) -> bool:  # noqa: ARG002
        return False


@dataclass(frozen=True)
class Started:
    process_id: Any
    bundle_id: str

    def is_running(self, bundle_id: Optional[str] = None) -> bool:
        return bundle_id is None or bundle_id == self.bundle_id


ProcessState = Union[Unstarted, Started]

UNSTARTED = Unstarted()


class ProcessStateTracker:
    def __init__(self) -> None:
        self._state: ProcessState = UNSTARTED

    def record(self, process_id: Any, bundle_id: str) -> Started:
        self._state = Started(process_id=process_id, bundle_id=bundle_id)
        return self._state

    def current(self) -> ProcessState:
        return self._state

    def clear(self) -> None:
        self._state = UNSTARTED
