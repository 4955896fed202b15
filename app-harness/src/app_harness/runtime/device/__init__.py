"""Launch/relaunch decision engine for one app on one device."""

from __future__ import annotations

from app_harness.runtime.device.device import Device
from app_harness.runtime.device.launch_args import ABSENT, LaunchArgsStore
from app_harness.runtime.device.launch_request import (
    LaunchRequest,
    build_delivery,
    compose_launch_payload,
)
from app_harness.runtime.device.process_state import (
    UNSTARTED,
    ProcessState,
    ProcessStateTracker,
    Started,
    Unstarted,
)

__all__ = [
    "ABSENT",
    "Device",
    "LaunchArgsStore",
    "LaunchRequest",
    "ProcessState",
    "ProcessStateTracker",
    "Started",
    "UNSTARTED",
    "Unstarted",
    "build_delivery",
    "compose_launch_payload",
]
