"""Device drivers: the backend capability surface and its implementations."""

from __future__ import annotations

from app_harness.runtime.drivers.base import DeviceDriverBase
from app_harness.runtime.drivers.registry import available_drivers, make_driver, register_driver

__all__ = [
    "DeviceDriverBase",
    "available_drivers",
    "make_driver",
    "register_driver",
]
