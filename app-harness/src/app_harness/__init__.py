"""App-Harness: launch/relaunch control core for mobile app test automation.

The package exposes:
- a per-device `Device` that decides between cold launch, warm payload
  delivery and manual-launch waits
- the driver capability surface (`DeviceDriverBase`) plus an adb-backed driver
- harness config loading and runtime flags
"""

__all__ = [
    "cli",
    "config",
    "errors",
    "runtime",
]
