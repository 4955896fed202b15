from __future__ import annotations

import json
import shlex
import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from app_harness.errors import DriverError, InvalidArgumentError
from app_harness.runtime.drivers.android.driver import (
    AdbDeviceDriver,
    instrumentation_extras,
    resolve_permissions,
)


class _FakeAdb:
    """Stands in for subprocess.run; answers `pidof` and `devices`, records the rest."""

    def __init__(self, *, pid: str = "4321", devices: str = "") -> None:
        self.cmds: list[list[str]] = []
        self.pid = pid
        self.devices = devices

    def __call__(self, cmd, **kwargs):
        self.cmds.append(list(cmd))
        stdout = ""
        returncode = 0
        if cmd[-1:] == ["devices"]:
            stdout = self.devices
        elif len(cmd) > 1 and cmd[-2] == "shell" and cmd[-1].startswith("pidof "):
            stdout = self.pid
            returncode = 0 if self.pid else 1
        return SimpleNamespace(stdout=stdout, stderr="", returncode=returncode)

    def shell(self) -> list[list[str]]:
        return [shlex.split(c[-1]) for c in self.cmds if len(c) > 1 and c[-2] == "shell"]


class _FakePopen:
    started: list[list[str]] = []
    instances: list["_FakePopen"] = []

    def __init__(self, cmd, **kwargs) -> None:
        _FakePopen.started.append(list(cmd))
        _FakePopen.instances.append(self)
        self.args = cmd
        self.returncode = None
        self.waited = False
        self.killed = False

    def poll(self):
        return self.returncode

    def terminate(self) -> None:
        self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        self.waited = True
        return self.returncode


class _StuckPopen(_FakePopen):
    """An `adb shell` client that ignores SIGTERM."""

    def terminate(self) -> None:
        pass

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired(self.args, timeout)
        return super().wait(timeout)


@pytest.fixture
def fake_adb(monkeypatch) -> _FakeAdb:
    fake = _FakeAdb()
    monkeypatch.setattr(subprocess, "run", fake)
    _FakePopen.started = []
    _FakePopen.instances = []
    monkeypatch.setattr(subprocess, "Popen", _FakePopen)
    return fake


def test_instrumentation_extras_encode_values_and_drop_reserved_keys() -> None:
    extras = instrumentation_extras(
        {"detoxServer": "ws://localhost:8099", "n": 1, "o": {"k": [1]}, "class": "X", "debug": True}
    )
    assert extras == (
        ["-e", "detoxServer", "ws://localhost:8099"]
        + ["-e", "n", "1"]
        + ["-e", "o", '{"k":[1]}']
    )


def test_resolve_permissions_expands_aliases() -> None:
    resolved = resolve_permissions(
        {"camera": "YES", "location": "never", "android.permission.READ_SMS": True, "faceid": "YES"}
    )
    assert resolved == [
        ("android.permission.CAMERA", True),
        ("android.permission.ACCESS_FINE_LOCATION", False),
        ("android.permission.ACCESS_COARSE_LOCATION", False),
        ("android.permission.READ_SMS", True),
    ]


@pytest.mark.asyncio
async def test_acquire_uses_configured_serial_or_first_online_device(fake_adb) -> None:
    driver = AdbDeviceDriver()
    assert await driver.acquire_free_device({"serial": "emulator-5556"}) == "emulator-5556"
    assert fake_adb.cmds == []

    fake_adb.devices = "List of devices attached\nemulator-5554\tdevice\n"
    assert await AdbDeviceDriver().acquire_free_device({}) == "emulator-5554"

    fake_adb.devices = "List of devices attached\n"
    with pytest.raises(DriverError, match="no online adb devices"):
        await AdbDeviceDriver().acquire_free_device({})


@pytest.mark.asyncio
async def test_bundle_id_from_aapt_badging(monkeypatch) -> None:
    def fake_run(cmd, **kwargs):
        assert cmd == ["aapt", "dump", "badging", "app.apk"]
        return SimpleNamespace(
            stdout="package: name='com.example.app' versionCode='1'\n", stderr="", returncode=0
        )

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert await AdbDeviceDriver().get_bundle_id_from_binary("app.apk") == "com.example.app"

    monkeypatch.setattr(
        subprocess, "run", lambda cmd, **kw: SimpleNamespace(stdout="", stderr="bad", returncode=1)
    )
    with pytest.raises(DriverError, match="cannot read package name"):
        await AdbDeviceDriver().get_bundle_id_from_binary("broken.apk")


@pytest.mark.asyncio
async def test_install_and_uninstall_include_test_binary(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.install_app("s", "app.apk", "app-test.apk")
    await driver.uninstall_app("s", "com.example.app")
    assert [c[3:] for c in fake_adb.cmds] == [
        ["install", "-r", "-g", "app.apk"],
        ["install", "-r", "-g", "app-test.apk"],
        ["uninstall", "com.example.app"],
        ["uninstall", "com.example.app.test"],
    ]


@pytest.mark.asyncio
async def test_launch_app_starts_instrumentation_and_returns_pid(fake_adb) -> None:
    driver = AdbDeviceDriver(instrumentation_runner="com.example.Runner")

    pid = await driver.launch_app(
        "emulator-5554",
        "com.example.app",
        {"detoxServer": "ws://localhost:8099", "detoxSessionId": "test"},
    )

    assert pid == 4321
    (cmd,) = _FakePopen.started
    assert cmd[:4] == ["adb", "-s", "emulator-5554", "shell"]
    assert shlex.split(cmd[4]) == (
        ["am", "instrument", "-w", "-r"]
        + ["-e", "detoxServer", "ws://localhost:8099"]
        + ["-e", "detoxSessionId", "test"]
        + ["com.example.app.test/com.example.Runner"]
    )
    assert fake_adb.shell()[-1] == ["pidof", "com.example.app"]


@pytest.mark.asyncio
async def test_launch_app_times_out_without_pid(fake_adb) -> None:
    fake_adb.pid = ""
    driver = AdbDeviceDriver(launch_timeout_s=0, poll_interval_s=0)
    with pytest.raises(DriverError, match="did not start"):
        await driver.launch_app("s", "com.example.app", {})


@pytest.mark.asyncio
async def test_terminate_force_stops(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.launch_app("s", "com.example.app", {})
    await driver.terminate("s", "com.example.app")
    assert fake_adb.shell()[-1] == ["am", "force-stop", "com.example.app"]
    (proc,) = _FakePopen.instances
    assert proc.returncode == -15
    assert proc.waited


@pytest.mark.asyncio
async def test_launch_on_running_app_reads_the_new_pid(monkeypatch, fake_adb) -> None:
    new_pids = iter(["5000", "5001"])

    def run(cmd, **kwargs):
        if cmd[-1] == "am force-stop com.example.app":
            fake_adb.pid = ""
        return fake_adb(cmd, **kwargs)

    class _Instrumentation(_FakePopen):
        # the package only comes up with a new pid once the old process is gone
        def __init__(self, cmd, **kwargs) -> None:
            super().__init__(cmd, **kwargs)
            fake_adb.cmds.append(["<instrument>"])
            if not fake_adb.pid:
                fake_adb.pid = next(new_pids)

    monkeypatch.setattr(subprocess, "run", run)
    monkeypatch.setattr(subprocess, "Popen", _Instrumentation)
    driver = AdbDeviceDriver(poll_interval_s=0)

    first = await driver.launch_app("s", "com.example.app", {})
    second = await driver.launch_app("s", "com.example.app", {})

    assert (first, second) == (5000, 5001)
    steps = [c[-1] for c in fake_adb.cmds]
    assert steps == ["am force-stop com.example.app", "<instrument>", "pidof com.example.app"] * 2
    previous, current = _FakePopen.instances
    assert previous.returncode == -15 and previous.waited
    assert current.returncode is None


@pytest.mark.asyncio
async def test_cleanup_kills_client_that_ignores_terminate(monkeypatch, fake_adb) -> None:
    monkeypatch.setattr(subprocess, "Popen", _StuckPopen)
    driver = AdbDeviceDriver()
    await driver.launch_app("s", "com.example.app", {})

    await driver.cleanup("s", "com.example.app")

    (proc,) = _FakePopen.instances
    assert proc.killed
    assert proc.waited
    assert proc.returncode == -9

    # already reaped; nothing left to stop
    await driver.terminate("s", "com.example.app")
    assert fake_adb.shell()[-1] == ["am", "force-stop", "com.example.app"]


@pytest.mark.asyncio
async def test_deliver_url_opens_view_intent(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.deliver_payload({"delayPayload": True, "url": "scheme://x?a=1&b=2"}, "s")
    assert fake_adb.shell() == [
        ["am", "start", "-a", "android.intent.action.VIEW", "-d", "scheme://x?a=1&b=2"]
    ]


@pytest.mark.asyncio
async def test_deliver_data_files_is_unsupported(fake_adb) -> None:
    driver = AdbDeviceDriver()
    with pytest.raises(DriverError, match="not supported"):
        await driver.deliver_payload(
            {"delayPayload": True, "detoxUserNotificationDataURL": "/p.json"}, "s"
        )
    with pytest.raises(InvalidArgumentError):
        await driver.deliver_payload({"delayPayload": True}, "s")


@pytest.mark.asyncio
async def test_create_payload_file_pushes_to_device(fake_adb, tmp_path: Path) -> None:
    driver = AdbDeviceDriver(payload_dir=tmp_path)
    local = Path(await driver.create_payload_file({"title": "hi"}))
    assert json.loads(local.read_text(encoding="utf-8")) == {"title": "hi"}
    assert fake_adb.cmds == []

    await driver.acquire_free_device({"serial": "emulator-5554"})
    remote = await driver.create_payload_file({"title": "again"})

    assert remote.startswith("/data/local/tmp/detox/payload-")
    assert fake_adb.shell() == [["mkdir", "-p", "/data/local/tmp/detox"]]
    push = fake_adb.cmds[-1]
    assert push[3] == "push"
    assert push[5] == remote


@pytest.mark.asyncio
async def test_permissions_grant_and_revoke(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.set_permissions("s", "com.example.app", {"camera": "YES", "microphone": "NO"})
    assert fake_adb.shell() == [
        ["pm", "grant", "com.example.app", "android.permission.CAMERA"],
        ["pm", "revoke", "com.example.app", "android.permission.RECORD_AUDIO"],
    ]


@pytest.mark.asyncio
async def test_feature_toggles(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.send_to_home("s")
    await driver.press_back("s")
    await driver.set_orientation("s", "landscape")
    await driver.set_location("emulator-5554", "52.1", "4.3")
    await driver.reverse_tcp_port("s", 8081)

    assert fake_adb.shell() == [
        ["input", "keyevent", "KEYCODE_HOME"],
        ["input", "keyevent", "KEYCODE_BACK"],
        ["settings", "put", "system", "accelerometer_rotation", "0"],
        ["settings", "put", "system", "user_rotation", "1"],
    ]
    assert ["adb", "-s", "emulator-5554", "emu", "geo", "fix", "4.3", "52.1"] in fake_adb.cmds
    assert fake_adb.cmds[-1] == ["adb", "-s", "s", "reverse", "tcp:8081", "tcp:8081"]

    with pytest.raises(InvalidArgumentError, match="orientation"):
        await driver.set_orientation("s", "upside-down")


@pytest.mark.asyncio
async def test_shutdown_kills_emulators_only(fake_adb) -> None:
    driver = AdbDeviceDriver()
    await driver.shutdown("0123456789")
    assert fake_adb.cmds == []
    await driver.shutdown("emulator-5554")
    assert fake_adb.cmds == [["adb", "-s", "emulator-5554", "emu", "kill"]]


@pytest.mark.asyncio
async def test_screenshot_is_written_to_artifacts(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **kw: SimpleNamespace(stdout=b"\x89PNGdata", stderr=b"", returncode=0),
    )
    driver = AdbDeviceDriver(artifacts_dir=tmp_path)
    path = await driver.take_screenshot("s", "login")
    assert path == str(tmp_path / "login.png")
    assert (tmp_path / "login.png").read_bytes() == b"\x89PNGdata"
