"""Per-device launch/relaunch control.

`Device` represents one app under test on one device. For each launch it
decides between:

  * cold launch: start a new app process with a freshly composed payload
  * warm delivery: hand a url/notification/activity to the running process
  * manual wait: announce the payload and wait for an externally started app

All operations of one `Device` run one at a time (FIFO on an asyncio lock),
so a relaunch's terminate -> reinstall -> launch sequence is never
interleaved with another call on the same device. Distinct devices share
no mutable state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from app_harness.config import BehaviorConfig, DeviceConfig, SessionConfig
from app_harness.errors import InvalidArgumentError
from app_harness.runtime.device.launch_args import ABSENT, LaunchArgsStore
from app_harness.runtime.device.launch_request import (
    USER_ACTIVITY_DATA_URL_KEY,
    USER_NOTIFICATION_DATA_URL_KEY,
    LaunchRequest,
    build_delivery,
    compose_launch_payload,
)
from app_harness.runtime.device.process_state import (
    ProcessState,
    ProcessStateTracker,
    Started,
)
from app_harness.runtime.drivers.base import DeviceDriverBase
from app_harness.runtime.events import APP_READY, AsyncEmitter
from app_harness.runtime.flags import RuntimeFlags

logger = logging.getLogger(__name__)


class Device:
    def __init__(
        self,
        *,
        device_config: DeviceConfig,
        device_driver: DeviceDriverBase,
        session_config: SessionConfig,
        behavior_config: Optional[BehaviorConfig] = None,
        emitter: Optional[AsyncEmitter] = None,
        flags: Optional[RuntimeFlags] = None,
    ) -> None:
        if not device_config.binary_path:
            raise InvalidArgumentError("device configuration binaryPath is missing")

        self._device_config = device_config
        self._driver = device_driver
        self._session_config = session_config
        self._behavior_config = behavior_config or BehaviorConfig()
        self._emitter = emitter or AsyncEmitter()
        self._flags = flags or RuntimeFlags()

        self._device_id: Optional[str] = None
        self._bundle_id: Optional[str] = device_config.bundle_id
        self._launch_args = LaunchArgsStore()
        self._tracker = ProcessStateTracker()
        self._lock = asyncio.Lock()

    # --------------------------------- Properties ---------------------------------

    @property
    def id(self) -> Optional[str]:
        return self._device_id

    @property
    def name(self) -> str:
        return self._driver.name

    @property
    def type(self) -> str:
        return self._device_config.type

    @property
    def bundle_id(self) -> Optional[str]:
        return self._bundle_id

    @property
    def device_driver(self) -> DeviceDriverBase:
        return self._driver

    @property
    def emitter(self) -> AsyncEmitter:
        return self._emitter

    @property
    def process_state(self) -> ProcessState:
        return self._tracker.current()

    @property
    def launch_args(self) -> Mapping[str, Any]:
        return self._launch_args.snapshot()

    # -------------------------------- Preparation ---------------------------------

    async def prepare(self) -> None:
        async with self._lock:
            self._device_id = await self._driver.acquire_free_device(self._device_config.device)
            logger.info("acquired device %s (%s)", self._device_id, self.type)
            await self._resolve_bundle_id()

    async def _resolve_bundle_id(self) -> str:
        if self._bundle_id is None:
            self._bundle_id = await self._driver.get_bundle_id_from_binary(
                self._device_config.binary_path
            )
            logger.debug("resolved bundle id %s", self._bundle_id)
        return self._bundle_id

    # -------------------------------- Launch args ---------------------------------

    def set_launch_arg(self, key: str, value: Any = ABSENT) -> None:
        self._launch_args.set(key, value)

    def clear_launch_arg(self, key: str) -> None:
        self._launch_args.clear(key)

    # ------------------------------ Launch/relaunch -------------------------------

    async def launch_app(
        self, params: Any = None, *, bundle_id: Optional[str] = None
    ) -> ProcessState:
        """Make the app visible: warm-deliver to a running process or cold launch it."""
        request = LaunchRequest.from_params(params)
        request.validate()
        async with self._lock:
            return await self._launch_app(request, bundle_id=bundle_id)

    async def relaunch_app(
        self, params: Any = None, *, bundle_id: Optional[str] = None
    ) -> ProcessState:
        """Restart-oriented launch; `newInstance` defaults to true."""
        request = LaunchRequest.from_params(params)
        request.validate()
        async with self._lock:
            if request.new_instance is not False:
                await self._terminate_running()

            should_reinstall = request.delete is True or (
                request.delete is not False and not self._flags.reuse
            )
            if should_reinstall:
                await self._reinstall_app()

            return await self._launch_app(request, bundle_id=bundle_id)

    async def _launch_app(
        self, request: LaunchRequest, *, bundle_id: Optional[str] = None
    ) -> ProcessState:
        bundle_id = bundle_id or await self._resolve_bundle_id()
        payload = await compose_launch_payload(
            self._session_config,
            self._launch_args.snapshot(),
            request,
            create_payload_file=self._driver.create_payload_file,
        )

        if self._behavior_config.is_manual_launch:
            logger.info("manual launch mode: waiting for %s on %s", bundle_id, self._device_id)
            await self._driver.wait_for_app_launch(
                self._device_id, bundle_id, payload, request.language_and_locale
            )
            return self._tracker.current()

        state = self._tracker.current()
        if state.is_running(bundle_id) and request.new_instance is not True and request.has_payload:
            delivery = build_delivery(request, payload)
            logger.info(
                "delivering %s to running %s (pid=%s)",
                ", ".join(request.payload_params()),
                bundle_id,
                state.process_id,
            )
            await self._driver.deliver_payload(delivery, self._device_id)
            return state

        if state.is_running(bundle_id) and request.new_instance is False:
            logger.info(
                "%s already running on %s (pid=%s)", bundle_id, self._device_id, state.process_id
            )
            return state

        if request.permissions:
            await self._driver.set_permissions(
                self._device_id, bundle_id, dict(request.permissions)
            )

        process_id = await self._driver.launch_app(
            self._device_id, bundle_id, payload, request.language_and_locale
        )
        started = self._tracker.record(process_id, bundle_id)
        logger.info("launched %s on %s (pid=%s)", bundle_id, self._device_id, process_id)

        await self._emitter.emit(
            APP_READY,
            {"deviceId": self._device_id, "bundleId": bundle_id, "pid": process_id},
        )
        return started

    async def _terminate_running(self) -> None:
        state = self._tracker.current()
        if not isinstance(state, Started):
            return
        logger.info("terminating %s (pid=%s)", state.bundle_id, state.process_id)
        await self._driver.terminate(self._device_id, state.bundle_id)
        self._tracker.clear()

    async def _reinstall_app(self) -> None:
        bundle_id = await self._resolve_bundle_id()
        logger.info("reinstalling %s on %s", bundle_id, self._device_id)
        await self._driver.uninstall_app(self._device_id, bundle_id)
        # Uninstalling kills any running process of the app.
        if self._tracker.current().is_running(bundle_id):
            self._tracker.clear()
        await self._driver.install_app(
            self._device_id,
            self._device_config.binary_path,
            self._device_config.test_binary_path,
        )

    # ------------------------------- App management -------------------------------

    async def terminate_app(self, bundle_id: Optional[str] = None) -> None:
        async with self._lock:
            bundle_id = bundle_id or await self._resolve_bundle_id()
            await self._driver.terminate(self._device_id, bundle_id)
            if self._tracker.current().is_running(bundle_id):
                self._tracker.clear()

    async def install_app(
        self, binary_path: Optional[str] = None, test_binary_path: Optional[str] = None
    ) -> None:
        async with self._lock:
            await self._driver.install_app(
                self._device_id,
                binary_path or self._device_config.binary_path,
                test_binary_path or self._device_config.test_binary_path,
            )

    async def uninstall_app(self, bundle_id: Optional[str] = None) -> None:
        async with self._lock:
            bundle_id = bundle_id or await self._resolve_bundle_id()
            await self._driver.uninstall_app(self._device_id, bundle_id)
            if self._tracker.current().is_running(bundle_id):
                self._tracker.clear()

    async def install_util_binaries(self) -> None:
        paths = list(self._device_config.util_binary_paths)
        if not paths:
            return
        async with self._lock:
            await self._driver.install_util_binaries(self._device_id, paths)

    # ------------------------------ Payload delivery ------------------------------

    async def open_url(self, params: Any) -> None:
        if not isinstance(params, Mapping):
            raise InvalidArgumentError(
                f"open_url expects a mapping such as {{'url': ...}}, got {type(params).__name__}"
            )
        async with self._lock:
            await self._driver.deliver_payload(dict(params), self._device_id)

    async def send_user_notification(self, payload: Any) -> None:
        await self._send_payload_file(USER_NOTIFICATION_DATA_URL_KEY, payload)

    async def send_user_activity(self, payload: Any) -> None:
        await self._send_payload_file(USER_ACTIVITY_DATA_URL_KEY, payload)

    async def _send_payload_file(self, key: str, payload: Any) -> None:
        async with self._lock:
            url = await self._driver.create_payload_file(payload)
            await self._driver.deliver_payload({key: url}, self._device_id)

    # ------------------------------- Passthroughs ---------------------------------

    async def _forward(self, method: str, *args: Any) -> Any:
        async with self._lock:
            return await getattr(self._driver, method)(*args)

    async def set_biometric_enrollment(self, enabled: bool) -> None:
        await self._forward("set_biometric_enrollment", self._device_id, "YES" if enabled else "NO")

    async def set_location(self, lat: float, lon: float) -> None:
        await self._forward("set_location", self._device_id, str(lat), str(lon))

    async def take_screenshot(self, name: str) -> Optional[str]:
        if not name:
            raise InvalidArgumentError("cannot take a screenshot with an empty name")
        return await self._forward("take_screenshot", self._device_id, name)

    async def capture_view_hierarchy(self, name: str = "capture") -> Optional[str]:
        return await self._forward("capture_view_hierarchy", self._device_id, name or "capture")

    async def shutdown(self) -> None:
        async with self._lock:
            await self._driver.shutdown(self._device_id)
            self._tracker.clear()

    async def cleanup(self) -> None:
        await self._forward("cleanup", self._device_id, self._bundle_id)

    async def send_to_home(self) -> None:
        await self._forward("send_to_home", self._device_id)

    async def press_back(self) -> None:
        await self._forward("press_back", self._device_id)

    async def match_face(self) -> None:
        await self._forward("match_face", self._device_id)

    async def unmatch_face(self) -> None:
        await self._forward("unmatch_face", self._device_id)

    async def match_finger(self) -> None:
        await self._forward("match_finger", self._device_id)

    async def unmatch_finger(self) -> None:
        await self._forward("unmatch_finger", self._device_id)

    async def set_status_bar(self, params: Mapping[str, Any]) -> None:
        await self._forward("set_status_bar", self._device_id, params)

    async def reset_status_bar(self) -> None:
        await self._forward("reset_status_bar", self._device_id)

    async def shake(self) -> None:
        await self._forward("shake", self._device_id)

    async def set_orientation(self, orientation: str) -> None:
        await self._forward("set_orientation", self._device_id, orientation)

    async def reverse_tcp_port(self, port: int) -> None:
        await self._forward("reverse_tcp_port", self._device_id, port)

    async def unreverse_tcp_port(self, port: int) -> None:
        await self._forward("unreverse_tcp_port", self._device_id, port)

    async def set_url_blacklist(self, urls: Optional[list[str]] = None) -> None:
        await self._forward("set_url_blacklist", list(urls or []))

    async def enable_synchronization(self) -> None:
        await self._forward("enable_synchronization")

    async def disable_synchronization(self) -> None:
        await self._forward("disable_synchronization")

    async def reset_content_and_settings(self) -> None:
        await self._forward("reset_content_and_settings", self._device_id)

    async def reload_react_native(self) -> None:
        await self._forward("reload_react_native")

    async def clear_keychain(self) -> None:
        await self._forward("clear_keychain", self._device_id)

    async def get_ui_device(self) -> Any:
        return await self._forward("get_ui_device")

    def get_platform(self) -> str:
        return self._driver.get_platform()
