"""Error taxonomy shared by the launch core, the config layer and the drivers."""

from __future__ import annotations


class HarnessError(RuntimeError):
    pass


class ConflictingLaunchParamsError(HarnessError):
    """More than one of url / userNotification / userActivity was requested."""


class InvalidArgumentError(HarnessError, ValueError):
    """A public operation received a malformed argument."""


class ConfigError(HarnessError):
    pass


class DriverError(HarnessError):
    """Raised by the bundled drivers when a backend command fails."""
