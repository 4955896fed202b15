from __future__ import annotations

import asyncio
import itertools
import sys
from pathlib import Path
from typing import Any, Iterable, Optional

import pytest
import pytest_asyncio


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[2]
    src = repo_root / "app-harness" / "src"
    src_str = str(src)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


_ensure_src_on_path()

from app_harness.config import BehaviorConfig, DeviceConfig, SessionConfig  # noqa: E402
from app_harness.runtime.device import Device  # noqa: E402
from app_harness.runtime.drivers.base import DeviceDriverBase  # noqa: E402
from app_harness.runtime.events import AsyncEmitter  # noqa: E402
from app_harness.runtime.flags import RuntimeFlags  # noqa: E402

DEVICE_ID = "emulator-5554"
BUNDLE_ID = "com.example.app"
PAYLOAD_URL = "/data/local/tmp/detox/payload.json"

_PASSTHROUGHS = (
    "shutdown",
    "cleanup",
    "reset_content_and_settings",
    "install_util_binaries",
    "reload_react_native",
    "send_to_home",
    "press_back",
    "set_biometric_enrollment",
    "match_face",
    "unmatch_face",
    "match_finger",
    "unmatch_finger",
    "set_status_bar",
    "reset_status_bar",
    "shake",
    "set_orientation",
    "set_location",
    "reverse_tcp_port",
    "unreverse_tcp_port",
    "set_url_blacklist",
    "enable_synchronization",
    "disable_synchronization",
    "clear_keychain",
    "get_ui_device",
    "take_screenshot",
    "capture_view_hierarchy",
)


class RecordingDriver(DeviceDriverBase):
    """Records every capability call as (name, args); yields to the loop on each call."""

    def __init__(self, *, pids: Optional[Iterable[Any]] = None) -> None:
        super().__init__()
        self.calls: list[tuple[str, tuple]] = []
        self.fail_on: dict[str, BaseException] = {}
        self._pid_seq = iter(pids) if pids is not None else itertools.count(100)
        for name in _PASSTHROUGHS:
            setattr(self, name, self._recorder(name))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def args_of(self, name: str) -> list[tuple]:
        return [args for n, args in self.calls if n == name]

    async def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        await asyncio.sleep(0)
        err = self.fail_on.get(name)
        if err is not None:
            raise err

    def _recorder(self, name: str):
        async def _call(*args: Any) -> Any:
            await self._record(name, *args)
            return None

        return _call

    async def acquire_free_device(self, device_query):
        await self._record("acquire_free_device", dict(device_query))
        return DEVICE_ID

    async def get_bundle_id_from_binary(self, binary_path):
        await self._record("get_bundle_id_from_binary", binary_path)
        return BUNDLE_ID

    async def install_app(self, device_id, binary_path, test_binary_path=None):
        await self._record("install_app", device_id, binary_path, test_binary_path)

    async def uninstall_app(self, device_id, bundle_id):
        await self._record("uninstall_app", device_id, bundle_id)

    async def launch_app(self, device_id, bundle_id, launch_args, language_and_locale=None):
        await self._record("launch_app", device_id, bundle_id, dict(launch_args), language_and_locale)
        return next(self._pid_seq)

    async def wait_for_app_launch(
        self, device_id, bundle_id, launch_args, language_and_locale=None
    ):
        await self._record(
            "wait_for_app_launch", device_id, bundle_id, dict(launch_args), language_and_locale
        )

    async def terminate(self, device_id, bundle_id):
        await self._record("terminate", device_id, bundle_id)

    async def deliver_payload(self, params, device_id):
        await self._record("deliver_payload", dict(params), device_id)

    async def create_payload_file(self, data):
        await self._record("create_payload_file", data)
        return PAYLOAD_URL

    async def set_permissions(self, device_id, bundle_id, permissions):
        await self._record("set_permissions", device_id, bundle_id, dict(permissions))


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(server="ws://localhost:8099", session_id="test")


@pytest.fixture
def driver() -> RecordingDriver:
    return RecordingDriver()


@pytest.fixture
def make_device(driver: RecordingDriver, session_config: SessionConfig):
    def _make(
        *,
        launch_mode: str = "auto",
        reuse: bool = False,
        emitter: Optional[AsyncEmitter] = None,
        bundle_id: Optional[str] = None,
        util_binary_paths: tuple[str, ...] = (),
    ) -> Device:
        device_config = DeviceConfig(
            type="none",
            binary_path="app/app-debug.apk",
            test_binary_path="app/app-debug-androidTest.apk",
            util_binary_paths=util_binary_paths,
            bundle_id=bundle_id,
        )
        return Device(
            device_config=device_config,
            device_driver=driver,
            session_config=session_config,
            behavior_config=BehaviorConfig(launch_app=launch_mode),
            emitter=emitter,
            flags=RuntimeFlags(overrides={"reuse": reuse}, environ={}),
        )

    return _make


@pytest_asyncio.fixture
async def device(make_device, driver: RecordingDriver) -> Device:
    dev = make_device()
    await dev.prepare()
    driver.calls.clear()
    return dev
