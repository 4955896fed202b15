"""adb-backed driver for Android emulators and attached devices.

The app is started through its instrumentation runner (`am instrument`),
with every launch arg passed as an `-e key value` extra. String values are
passed verbatim, everything else JSON-encoded. Keys that `am instrument`
reserves for itself are never forwarded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from app_harness.errors import DriverError, InvalidArgumentError
from app_harness.runtime.device.launch_request import (
    USER_ACTIVITY_DATA_URL_KEY,
    USER_NOTIFICATION_DATA_URL_KEY,
)
from app_harness.runtime.drivers.android.controller import AdbController, shell_cmd
from app_harness.runtime.drivers.base import DeviceDriverBase
from app_harness.runtime.drivers.registry import register_driver

logger = logging.getLogger(__name__)

DEFAULT_INSTRUMENTATION_RUNNER = "androidx.test.runner.AndroidJUnitRunner"
DEVICE_PAYLOAD_DIR = "/data/local/tmp/detox"
INSTRUMENTATION_STOP_TIMEOUT_S = 5.0

# Ref: https://developer.android.com/studio/test/command-line#AMOptionsSyntax
RESERVED_INSTRUMENTATION_ARGS = frozenset(
    {"class", "package", "func", "unit", "size", "perf", "debug", "log", "emma", "coverageFile"}
)

_PERMISSION_ALIASES: Dict[str, tuple[str, ...]] = {
    "camera": ("android.permission.CAMERA",),
    "microphone": ("android.permission.RECORD_AUDIO",),
    "location": (
        "android.permission.ACCESS_FINE_LOCATION",
        "android.permission.ACCESS_COARSE_LOCATION",
    ),
    "contacts": ("android.permission.READ_CONTACTS", "android.permission.WRITE_CONTACTS"),
    "calendar": ("android.permission.READ_CALENDAR", "android.permission.WRITE_CALENDAR"),
    "notifications": ("android.permission.POST_NOTIFICATIONS",),
    "photos": ("android.permission.READ_MEDIA_IMAGES",),
}
_DENY_VALUES = {"no", "never", "unset", "false"}

_ORIENTATIONS = {"portrait": 0, "landscape": 1}

_BADGING_PACKAGE_RE = re.compile(r"package: name='([^']+)'")


def encode_launch_arg(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def instrumentation_extras(launch_args: Mapping[str, Any]) -> list[str]:
    extras: list[str] = []
    for key, value in launch_args.items():
        if key in RESERVED_INSTRUMENTATION_ARGS:
            logger.debug("dropping reserved instrumentation arg: %s", key)
            continue
        extras += ["-e", str(key), encode_launch_arg(value)]
    return extras


def resolve_permissions(permissions: Mapping[str, Any]) -> list[tuple[str, bool]]:
    """Map permission names/aliases to (android permission, grant?) pairs."""
    resolved: list[tuple[str, bool]] = []
    for name, value in permissions.items():
        grant = str(value).strip().lower() not in _DENY_VALUES and value is not False
        if name.startswith("android.permission."):
            resolved.append((name, grant))
            continue
        android_names = _PERMISSION_ALIASES.get(str(name).lower())
        if android_names is None:
            logger.warning("unsupported permission on android: %s", name)
            continue
        resolved += [(p, grant) for p in android_names]
    return resolved


class AdbDeviceDriver(DeviceDriverBase):
    platform = "android"

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        aapt_path: str = "aapt",
        timeout_s: float = 30.0,
        instrumentation_runner: str = DEFAULT_INSTRUMENTATION_RUNNER,
        launch_timeout_s: float = 30.0,
        manual_launch_timeout_s: Optional[float] = None,
        poll_interval_s: float = 0.5,
        artifacts_dir: Optional[Path] = None,
        payload_dir: Optional[Path] = None,
    ) -> None:
        super().__init__(payload_dir=payload_dir)
        self._adb_path = adb_path
        self._aapt_path = aapt_path
        self._timeout_s = float(timeout_s)
        self._instrumentation_runner = instrumentation_runner
        self._launch_timeout_s = float(launch_timeout_s)
        self._manual_launch_timeout_s = manual_launch_timeout_s
        self._poll_interval_s = float(poll_interval_s)
        self._artifacts_dir = Path(artifacts_dir) if artifacts_dir is not None else None
        self._controllers: Dict[str, AdbController] = {}
        self._instrumentation: Dict[str, subprocess.Popen] = {}
        self._device_id: Optional[str] = None

    @property
    def name(self) -> str:
        return f"android ({self._device_id})" if self._device_id else "android"

    def controller(self, device_id: Optional[str]) -> AdbController:
        key = device_id or ""
        if key not in self._controllers:
            self._controllers[key] = AdbController(
                adb_path=self._adb_path, serial=device_id, timeout_s=self._timeout_s
            )
        return self._controllers[key]

    def _artifacts(self) -> Path:
        if self._artifacts_dir is None:
            self._artifacts_dir = Path(tempfile.mkdtemp(prefix="app-harness-artifacts-"))
        self._artifacts_dir.mkdir(parents=True, exist_ok=True)
        return self._artifacts_dir

    # ------------------------------ Device lifecycle ------------------------------

    async def acquire_free_device(self, device_query: Mapping[str, Any]) -> str:
        serial = device_query.get("serial") or device_query.get("id")
        if not serial:
            serials = await asyncio.to_thread(self.controller(None).devices)
            if not serials:
                raise DriverError("no online adb devices found")
            serial = serials[0]
        self._device_id = str(serial)
        return self._device_id

    async def shutdown(self, device_id: str) -> None:
        if device_id and device_id.startswith("emulator-"):
            await asyncio.to_thread(self.controller(device_id).emu, "kill")

    async def cleanup(self, device_id: Optional[str], bundle_id: Optional[str]) -> None:
        procs = list(self._instrumentation.values())
        self._instrumentation.clear()
        for proc in procs:
            await self._stop_instrumentation(proc)

    # ------------------------------- App binaries ---------------------------------

    async def get_bundle_id_from_binary(self, binary_path: str) -> str:
        cmd = [self._aapt_path, "dump", "badging", str(binary_path)]
        proc = await asyncio.to_thread(
            subprocess.run, cmd, capture_output=True, text=True, timeout=self._timeout_s
        )
        m = _BADGING_PACKAGE_RE.search(proc.stdout or "")
        if proc.returncode != 0 or not m:
            raise DriverError(
                f"cannot read package name from {binary_path} (rc={proc.returncode}): "
                f"{(proc.stderr or '').strip()[:500]}"
            )
        return m.group(1)

    async def install_app(
        self, device_id: str, binary_path: str, test_binary_path: Optional[str] = None
    ) -> None:
        ctr = self.controller(device_id)
        await asyncio.to_thread(ctr.install, binary_path)
        if test_binary_path:
            await asyncio.to_thread(ctr.install, test_binary_path)

    async def uninstall_app(self, device_id: str, bundle_id: str) -> None:
        ctr = self.controller(device_id)
        await asyncio.to_thread(ctr.uninstall, bundle_id)
        await asyncio.to_thread(ctr.uninstall, f"{bundle_id}.test")

    async def install_util_binaries(self, device_id: str, paths: Sequence[str]) -> None:
        ctr = self.controller(device_id)
        for path in paths:
            await asyncio.to_thread(ctr.install, path)

    # ------------------------------- App process ----------------------------------

    def instrument_command(self, bundle_id: str, launch_args: Mapping[str, Any]) -> str:
        return shell_cmd(
            ["am", "instrument", "-w", "-r"]
            + instrumentation_extras(launch_args)
            + [f"{bundle_id}.test/{self._instrumentation_runner}"]
        )

    async def launch_app(
        self,
        device_id: str,
        bundle_id: str,
        launch_args: Mapping[str, Any],
        language_and_locale: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        if language_and_locale:
            logger.warning("language/locale override is not supported on android, ignoring")

        ctr = self.controller(device_id)
        previous = self._instrumentation.pop(device_id, None)
        if previous is not None:
            await self._stop_instrumentation(previous)
        # am instrument does not restart a live process; pidof would report the old one
        await asyncio.to_thread(ctr.force_stop, bundle_id)

        cmd = ctr.base_cmd() + ["shell", self.instrument_command(bundle_id, launch_args)]
        logger.debug("starting instrumentation: %s", " ".join(cmd))
        self._instrumentation[device_id] = subprocess.Popen(
            cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )
        return await self._wait_for_pid(ctr, bundle_id, timeout_s=self._launch_timeout_s)

    async def wait_for_app_launch(
        self,
        device_id: str,
        bundle_id: str,
        launch_args: Mapping[str, Any],
        language_and_locale: Optional[Mapping[str, Any]] = None,
    ) -> None:
        await super().wait_for_app_launch(device_id, bundle_id, launch_args, language_and_locale)
        logger.info(
            "start the app with: adb -s %s shell %s",
            device_id,
            self.instrument_command(bundle_id, launch_args),
        )
        await self._wait_for_pid(
            self.controller(device_id), bundle_id, timeout_s=self._manual_launch_timeout_s
        )

    async def _wait_for_pid(
        self, ctr: AdbController, bundle_id: str, *, timeout_s: Optional[float]
    ) -> int:
        deadline = None if timeout_s is None else time.monotonic() + float(timeout_s)
        while True:
            pid = await asyncio.to_thread(ctr.pidof, bundle_id)
            if pid is not None:
                return pid
            if deadline is not None and time.monotonic() >= deadline:
                raise DriverError(f"{bundle_id} did not start within {timeout_s}s")
            await asyncio.sleep(self._poll_interval_s)

    async def _stop_instrumentation(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            await asyncio.to_thread(proc.wait, timeout=INSTRUMENTATION_STOP_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            logger.warning("instrumentation client %s ignored SIGTERM, killing", proc.args)
            proc.kill()
            await asyncio.to_thread(proc.wait)

    async def terminate(self, device_id: str, bundle_id: str) -> None:
        proc = self._instrumentation.pop(device_id, None)
        if proc is not None:
            await self._stop_instrumentation(proc)
        await asyncio.to_thread(self.controller(device_id).force_stop, bundle_id)

    async def deliver_payload(self, params: Mapping[str, Any], device_id: str) -> None:
        url = params.get("url")
        if url:
            cmd = shell_cmd(["am", "start", "-a", "android.intent.action.VIEW", "-d", str(url)])
            await asyncio.to_thread(self.controller(device_id).adb_shell, cmd)
            return

        for key in (USER_NOTIFICATION_DATA_URL_KEY, USER_ACTIVITY_DATA_URL_KEY):
            if key in params:
                raise DriverError(f"{key} delivery to a running app is not supported over adb")
        raise InvalidArgumentError(f"nothing to deliver in payload: {sorted(params)}")

    async def create_payload_file(self, data: Any) -> str:
        local_path = Path(await super().create_payload_file(data))
        if self._device_id is None:
            return str(local_path)

        remote_path = f"{DEVICE_PAYLOAD_DIR}/{local_path.name}"
        ctr = self.controller(self._device_id)
        await asyncio.to_thread(ctr.adb_shell, shell_cmd(["mkdir", "-p", DEVICE_PAYLOAD_DIR]))
        await asyncio.to_thread(ctr.push_file, local_path, remote_path)
        return remote_path

    async def set_permissions(
        self, device_id: str, bundle_id: str, permissions: Mapping[str, Any]
    ) -> None:
        ctr = self.controller(device_id)
        for permission, grant in resolve_permissions(permissions):
            verb = "grant" if grant else "revoke"
            await asyncio.to_thread(ctr.adb_shell, shell_cmd(["pm", verb, bundle_id, permission]))

    # ------------------------------ Feature toggles -------------------------------

    async def _keyevent(self, device_id: str, keycode: str) -> None:
        cmd = shell_cmd(["input", "keyevent", keycode])
        await asyncio.to_thread(self.controller(device_id).adb_shell, cmd)

    async def send_to_home(self, device_id: str) -> None:
        await self._keyevent(device_id, "KEYCODE_HOME")

    async def press_back(self, device_id: str) -> None:
        await self._keyevent(device_id, "KEYCODE_BACK")

    async def shake(self, device_id: str) -> None:
        logger.warning("shake is not supported over adb, ignoring")

    async def set_orientation(self, device_id: str, orientation: str) -> None:
        rotation = _ORIENTATIONS.get(str(orientation).strip().lower())
        if rotation is None:
            raise InvalidArgumentError(
                f"orientation must be one of {sorted(_ORIENTATIONS)}, got {orientation!r}"
            )
        ctr = self.controller(device_id)
        await asyncio.to_thread(
            ctr.adb_shell, shell_cmd(["settings", "put", "system", "accelerometer_rotation", "0"])
        )
        await asyncio.to_thread(
            ctr.adb_shell, shell_cmd(["settings", "put", "system", "user_rotation", str(rotation)])
        )

    async def set_location(self, device_id: str, lat: str, lon: str) -> None:
        # geo fix takes longitude first.
        await asyncio.to_thread(self.controller(device_id).emu, "geo", "fix", lon, lat)

    async def reverse_tcp_port(self, device_id: str, port: int) -> None:
        await asyncio.to_thread(self.controller(device_id).reverse, port)

    async def unreverse_tcp_port(self, device_id: str, port: int) -> None:
        await asyncio.to_thread(self.controller(device_id).unreverse, port)

    # -------------------------------- Inspection ----------------------------------

    async def take_screenshot(self, device_id: str, name: str) -> Optional[str]:
        png = await asyncio.to_thread(self.controller(device_id).screencap)
        path = self._artifacts() / f"{name}.png"
        path.write_bytes(png)
        return str(path)

    async def capture_view_hierarchy(self, device_id: str, name: str) -> Optional[str]:
        path = self._artifacts() / f"{name}.xml"
        await asyncio.to_thread(self.controller(device_id).uiautomator_dump, local_path=path)
        return str(path)


register_driver("android.emulator", "android.attached")(AdbDeviceDriver)
