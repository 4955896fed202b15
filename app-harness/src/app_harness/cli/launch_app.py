from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from app_harness.config import DeviceConfig, HarnessConfig, load_harness_config
from app_harness.errors import ConfigError, ConflictingLaunchParamsError, InvalidArgumentError
from app_harness.runtime.device import Device, Started
from app_harness.runtime.drivers import make_driver
from app_harness.runtime.flags import RuntimeFlags

logger = logging.getLogger(__name__)


def parse_launch_arg(raw: str) -> tuple[str, Any]:
    """Parse `key=value`; the value is read as YAML so `n=1` gives an int."""
    if "=" not in raw:
        raise InvalidArgumentError(f"launch arg must look like key=value, got: {raw}")
    key, value = raw.split("=", 1)
    key = key.strip()
    if not key:
        raise InvalidArgumentError(f"launch arg has an empty key: {raw}")
    return key, yaml.safe_load(value) if value.strip() else ""


def build_launch_params(args: argparse.Namespace) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if args.new_instance is not None:
        params["newInstance"] = args.new_instance
    if args.delete:
        params["delete"] = True
    if args.url:
        params["url"] = args.url
    if args.launch_arg:
        params["launchArgs"] = dict(parse_launch_arg(raw) for raw in args.launch_arg)
    return params


async def run_launch(
    config: HarnessConfig,
    device_config: DeviceConfig,
    *,
    params: Dict[str, Any],
    relaunch: bool,
    flags: RuntimeFlags,
) -> Dict[str, Any]:
    device = Device(
        device_config=device_config,
        device_driver=make_driver(device_config),
        session_config=config.session,
        behavior_config=config.behavior,
        flags=flags,
    )
    await device.prepare()
    if relaunch:
        state = await device.relaunch_app(params)
    else:
        state = await device.launch_app(params)

    out: Dict[str, Any] = {
        "device_id": device.id,
        "bundle_id": device.bundle_id,
        "state": "started" if isinstance(state, Started) else "unstarted",
    }
    if isinstance(state, Started):
        out["pid"] = state.process_id
    return out


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Launch (or relaunch) the app under test on one device."
    )
    parser.add_argument("--config", type=Path, required=True, help="Harness config (YAML/JSON).")
    parser.add_argument(
        "--configuration",
        type=str,
        default=None,
        help="Device configuration name (optional when the config has exactly one).",
    )
    parser.add_argument("--url", type=str, default=None, help="Deep link to open the app with.")
    parser.add_argument(
        "--launch-arg",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Onsite launch arg (repeatable).",
    )
    parser.add_argument(
        "--new-instance",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Force (or forbid) starting a new app process.",
    )
    parser.add_argument("--relaunch", action="store_true", help="Use relaunch semantics.")
    parser.add_argument("--delete", action="store_true", help="Reinstall the app before launch.")
    parser.add_argument(
        "--reuse",
        action="store_true",
        help="Reuse the installed app binaries (skip reinstall on relaunch).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    overrides: Dict[str, Any] = {"reuse": True} if args.reuse else {}
    try:
        config = load_harness_config(args.config)
        device_config = config.select(args.configuration)
        params = build_launch_params(args)
        out = asyncio.run(
            run_launch(
                config,
                device_config,
                params=params,
                relaunch=args.relaunch,
                flags=RuntimeFlags(overrides=overrides),
            )
        )
    except (ConfigError, InvalidArgumentError, ConflictingLaunchParamsError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(out, ensure_ascii=False, sort_keys=True, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
