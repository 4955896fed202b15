"""Runtime: per-device launch control, drivers, lifecycle events and flags."""

from __future__ import annotations

from app_harness.runtime.device import Device, LaunchRequest
from app_harness.runtime.events import APP_READY, AsyncEmitter
from app_harness.runtime.flags import RuntimeFlags

__all__ = [
    "APP_READY",
    "AsyncEmitter",
    "Device",
    "LaunchRequest",
    "RuntimeFlags",
]
