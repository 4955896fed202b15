"""Driver capability surface.

`DeviceDriverBase` lists every backend capability the launch core and the
`Device` passthroughs rely on. The base implementation is itself a usable
backend of type "none": installs and feature toggles are no-ops, launches
hand out placeholder pids, and manual-launch waits only log the launch
parameters. Concrete backends (see `drivers.android`) override what they
support.
"""

from __future__ import annotations

import itertools
import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from app_harness.errors import DriverError

logger = logging.getLogger(__name__)


class DeviceDriverBase:
    platform = "none"

    def __init__(self, *, payload_dir: Optional[Path] = None) -> None:
        self._payload_dir = Path(payload_dir) if payload_dir is not None else None
        self._pids = itertools.count(1)

    @property
    def name(self) -> str:
        return type(self).__name__

    def get_platform(self) -> str:
        return self.platform

    # ------------------------------ Device lifecycle ------------------------------

    async def acquire_free_device(self, device_query: Mapping[str, Any]) -> str:
        return str(device_query.get("id") or device_query.get("serial") or "none")

    async def shutdown(self, device_id: str) -> None:
        return None

    async def cleanup(self, device_id: Optional[str], bundle_id: Optional[str]) -> None:
        return None

    async def reset_content_and_settings(self, device_id: str) -> None:
        return None

    # ------------------------------- App binaries ---------------------------------

    async def get_bundle_id_from_binary(self, binary_path: str) -> str:
        raise DriverError(
            f"{self.name} cannot read the bundle id from {binary_path}; "
            "set bundleId in the device configuration"
        )

    async def install_app(
        self, device_id: str, binary_path: str, test_binary_path: Optional[str] = None
    ) -> None:
        return None

    async def uninstall_app(self, device_id: str, bundle_id: str) -> None:
        return None

    async def install_util_binaries(self, device_id: str, paths: Sequence[str]) -> None:
        return None

    # ------------------------------- App process ----------------------------------

    async def launch_app(
        self,
        device_id: str,
        bundle_id: str,
        launch_args: Mapping[str, Any],
        language_and_locale: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        return next(self._pids)

    async def wait_for_app_launch(
        self,
        device_id: str,
        bundle_id: str,
        launch_args: Mapping[str, Any],
        language_and_locale: Optional[Mapping[str, Any]] = None,
    ) -> None:
        logger.info(
            "waiting for %s to be launched manually on %s with launch args: %s",
            bundle_id,
            device_id,
            json.dumps(dict(launch_args), ensure_ascii=False, default=str),
        )
        if language_and_locale:
            logger.info("requested language/locale: %s", dict(language_and_locale))

    async def terminate(self, device_id: str, bundle_id: str) -> None:
        return None

    async def deliver_payload(self, params: Mapping[str, Any], device_id: str) -> None:
        return None

    async def create_payload_file(self, data: Any) -> str:
        """Write `data` as JSON and return a path the app can read it from."""
        if self._payload_dir is None:
            self._payload_dir = Path(tempfile.mkdtemp(prefix="app-harness-payloads-"))
        self._payload_dir.mkdir(parents=True, exist_ok=True)
        path = self._payload_dir / f"payload-{uuid4().hex}.json"
        path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        return str(path)

    async def set_permissions(
        self, device_id: str, bundle_id: str, permissions: Mapping[str, Any]
    ) -> None:
        return None

    async def reload_react_native(self) -> None:
        return None

    # ------------------------------ Feature toggles -------------------------------

    async def send_to_home(self, device_id: str) -> None:
        return None

    async def press_back(self, device_id: str) -> None:
        return None

    async def set_biometric_enrollment(self, device_id: str, yes_or_no: str) -> None:
        return None

    async def match_face(self, device_id: str) -> None:
        return None

    async def unmatch_face(self, device_id: str) -> None:
        return None

    async def match_finger(self, device_id: str) -> None:
        return None

    async def unmatch_finger(self, device_id: str) -> None:
        return None

    async def set_status_bar(self, device_id: str, params: Mapping[str, Any]) -> None:
        return None

    async def reset_status_bar(self, device_id: str) -> None:
        return None

    async def shake(self, device_id: str) -> None:
        return None

    async def set_orientation(self, device_id: str, orientation: str) -> None:
        return None

    async def set_location(self, device_id: str, lat: str, lon: str) -> None:
        return None

    async def reverse_tcp_port(self, device_id: str, port: int) -> None:
        return None

    async def unreverse_tcp_port(self, device_id: str, port: int) -> None:
        return None

    async def set_url_blacklist(self, urls: Sequence[str]) -> None:
        return None

    async def enable_synchronization(self) -> None:
        return None

    async def disable_synchronization(self) -> None:
        return None

    async def clear_keychain(self, device_id: str) -> None:
        return None

    # -------------------------------- Inspection ----------------------------------

    async def get_ui_device(self) -> Any:
        return None

    async def take_screenshot(self, device_id: str, name: str) -> Optional[str]:
        return None

    async def capture_view_hierarchy(self, device_id: str, name: str) -> Optional[str]:
        return None
