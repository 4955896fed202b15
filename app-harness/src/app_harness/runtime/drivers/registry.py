"""Driver registry keyed by device configuration `type`.

Built-in backends register themselves on import; `make_driver` imports them
lazily so that picking the "none" backend never touches adb.
"""

from __future__ import annotations

import importlib
from typing import Any, Callable, Dict

from app_harness.config import DeviceConfig
from app_harness.errors import InvalidArgumentError
from app_harness.runtime.drivers.base import DeviceDriverBase

DriverFactory = Callable[..., DeviceDriverBase]

_REGISTRY: Dict[str, DriverFactory] = {}
_BUILTIN_DRIVER_MODULES = [
    "app_harness.runtime.drivers.android.driver",
]
_BUILTINS_LOADED = False


def register_driver(*device_types: str) -> Callable[[DriverFactory], DriverFactory]:
    """Decorator to register a driver factory for one or more device types."""

    def _decorator(factory: DriverFactory) -> DriverFactory:
        for device_type in device_types:
            if device_type in _REGISTRY:
                raise ValueError(f"duplicate driver type: {device_type}")
            _REGISTRY[device_type] = factory
        return factory

    return _decorator


register_driver("none")(DeviceDriverBase)


def available_drivers() -> Dict[str, DriverFactory]:
    load_builtin_drivers()
    return dict(_REGISTRY)


def make_driver(device_config: DeviceConfig, **kwargs: Any) -> DeviceDriverBase:
    load_builtin_drivers()
    factory = _REGISTRY.get(device_config.type)
    if factory is None:
        known = ", ".join(sorted(_REGISTRY))
        raise InvalidArgumentError(
            f"unknown device type: {device_config.type} (known: {known})"
        )
    return factory(**kwargs)


def load_builtin_drivers() -> None:
    global _BUILTINS_LOADED
    if _BUILTINS_LOADED:
        return

    for module_name in _BUILTIN_DRIVER_MODULES:
        importlib.import_module(module_name)
    _BUILTINS_LOADED = True
