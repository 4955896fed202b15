"""Thin adb wrapper used by the Android driver.

Every call goes through `adb()`, which returns a frozen `AdbResult` whose
`args` are stable, so tests and logs can assert on exact command lines.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app_harness.errors import DriverError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdbResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class AdbBinaryResult:
    args: list[str]
    stdout: bytes
    stderr: bytes
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


def shell_cmd(parts: list[str]) -> str:
    return " ".join(shlex.quote(str(p)) for p in parts)


def parse_devices(txt: str) -> list[str]:
    """Serials in state `device` from `adb devices` output."""
    serials: list[str] = []
    for line in txt.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "device":
            serials.append(parts[0])
    return serials


def parse_pid(txt: str) -> Optional[int]:
    m = re.search(r"\b(\d+)\b", txt or "")
    return int(m.group(1)) if m else None


class AdbController:
    """adb bound to one device serial."""

    def __init__(
        self,
        *,
        adb_path: str = "adb",
        serial: Optional[str] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._adb_path = adb_path
        self._serial = serial
        self._timeout_s = timeout_s

    @property
    def serial(self) -> Optional[str]:
        return self._serial

    def base_cmd(self) -> list[str]:
        cmd = [self._adb_path]
        if self._serial:
            cmd += ["-s", self._serial]
        return cmd

    def adb(self, *args: str, timeout_s: float | None = None, check: bool = True) -> AdbResult:
        cmd = self.base_cmd() + list(args)
        logger.debug("adb: %s", " ".join(cmd))
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self._timeout_s if timeout_s is None else float(timeout_s),
        )
        result = AdbResult(
            args=cmd,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )
        if not result.ok():
            if check:
                raise DriverError(
                    f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                    f"stdout: {result.stdout}\n"
                    f"stderr: {result.stderr}"
                )
            logger.warning("adb command failed (rc=%s): %s", result.returncode, " ".join(cmd))
        return result

    def adb_binary(
        self, *args: str, timeout_s: float | None = None, check: bool = True
    ) -> AdbBinaryResult:
        cmd = self.base_cmd() + list(args)
        proc = subprocess.run(
            cmd,
            capture_output=True,
            timeout=self._timeout_s if timeout_s is None else float(timeout_s),
        )
        result = AdbBinaryResult(
            args=cmd,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )
        if check and not result.ok():
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise DriverError(
                f"adb command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stderr: {stderr}"
            )
        return result

    def adb_shell(
        self,
        command: str,
        *,
        timeout_s: float | None = None,
        check: bool = True,
    ) -> AdbResult:
        return self.adb("shell", command, timeout_s=timeout_s, check=check)

    # ---------------------------------- Devices -----------------------------------

    def devices(self) -> list[str]:
        res = self.adb("devices")
        return parse_devices(res.stdout)

    def emu(self, *args: str, check: bool = True) -> AdbResult:
        return self.adb("emu", *args, check=check)

    # --------------------------------- Packages -----------------------------------

    def install(self, apk_path: str, *, timeout_s: float | None = None) -> AdbResult:
        # -r: replace existing, -g: grant runtime permissions listed in the manifest.
        return self.adb("install", "-r", "-g", str(apk_path), timeout_s=timeout_s)

    def uninstall(self, package: str) -> AdbResult:
        return self.adb("uninstall", package, check=False)

    def force_stop(self, package: str) -> AdbResult:
        return self.adb_shell(shell_cmd(["am", "force-stop", package]))

    def pidof(self, package: str) -> Optional[int]:
        res = self.adb_shell(shell_cmd(["pidof", package]), check=False)
        if not res.ok():
            return None
        return parse_pid(res.stdout)

    # ---------------------------------- Files -------------------------------------

    def push_file(self, local_path: Path, remote_path: str) -> AdbResult:
        return self.adb("push", str(local_path), remote_path)

    def pull_file(self, remote_path: str, local_path: Path, *, check: bool = True) -> AdbResult:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        return self.adb("pull", remote_path, str(local_path), check=check)

    # ---------------------------------- Network -----------------------------------

    def reverse(self, port: int) -> AdbResult:
        return self.adb("reverse", f"tcp:{int(port)}", f"tcp:{int(port)}")

    def unreverse(self, port: int) -> AdbResult:
        return self.adb("reverse", "--remove", f"tcp:{int(port)}")

    # -------------------------------- Inspection ----------------------------------

    def screencap(self, *, timeout_s: float | None = None) -> bytes:
        """Return a screenshot PNG via `adb exec-out screencap -p`."""
        res = self.adb_binary("exec-out", "screencap", "-p", timeout_s=timeout_s)
        if not res.stdout.startswith(b"\x89PNG"):
            raise DriverError("screencap produced non-PNG bytes")
        return res.stdout

    def uiautomator_dump(
        self,
        *,
        local_path: Path,
        remote_path: str = "/sdcard/__app_harness_uiautomator_dump.xml",
        timeout_s: float | None = None,
        max_attempts: int = 3,
    ) -> Path:
        """Dump the UIAutomator view hierarchy XML to local_path."""
        dump_cmd = shell_cmd(["uiautomator", "dump", remote_path])
        for attempt in range(max_attempts):
            res = self.adb_shell(dump_cmd, timeout_s=timeout_s, check=False)
            if res.ok():
                pull = self.pull_file(remote_path, local_path, check=False)
                if pull.ok() and local_path.exists() and local_path.stat().st_size > 0:
                    break
            if attempt + 1 < max_attempts:
                time.sleep(0.5)
        else:
            raise DriverError(
                f"uiautomator dump failed after {max_attempts} attempts: {remote_path}"
            )

        self.adb_shell(shell_cmd(["rm", "-f", remote_path]), check=False)
        return local_path
