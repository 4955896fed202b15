"""Launch requests and launch payload composition.

A launch payload is the flat key/value mapping handed to the app under test
at process start. It is built from the session config, the prebaked launch
args and the call-site (onsite) launch args, plus a few derived keys for
deep links, notifications and user activities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from app_harness.config import SessionConfig
from app_harness.errors import ConflictingLaunchParamsError, InvalidArgumentError

logger = logging.getLogger(__name__)

SERVER_KEY = "detoxServer"
SESSION_ID_KEY = "detoxSessionId"
URL_OVERRIDE_KEY = "detoxURLOverride"
SOURCE_APP_OVERRIDE_KEY = "detoxSourceAppOverride"
USER_NOTIFICATION_DATA_URL_KEY = "detoxUserNotificationDataURL"
USER_ACTIVITY_DATA_URL_KEY = "detoxUserActivityDataURL"
DISABLE_TOUCH_INDICATORS_KEY = "detoxDisableTouchIndicators"

# Params that hand data to the app; at most one per launch.
PAYLOAD_PARAMS = ("url", "userNotification", "userActivity")

_DATA_URL_KEYS = {
    "userNotification": USER_NOTIFICATION_DATA_URL_KEY,
    "userActivity": USER_ACTIVITY_DATA_URL_KEY,
}

# camelCase (wire style) and snake_case spellings -> dataclass field.
_PARAM_FIELDS: Dict[str, str] = {
    "newInstance": "new_instance",
    "new_instance": "new_instance",
    "delete": "delete",
    "url": "url",
    "sourceApp": "source_app",
    "source_app": "source_app",
    "userNotification": "user_notification",
    "user_notification": "user_notification",
    "userActivity": "user_activity",
    "user_activity": "user_activity",
    "launchArgs": "launch_args",
    "launch_args": "launch_args",
    "languageAndLocale": "language_and_locale",
    "language_and_locale": "language_and_locale",
    "permissions": "permissions",
    "disableTouchIndicators": "disable_touch_indicators",
    "disable_touch_indicators": "disable_touch_indicators",
}

_BOOL_FIELDS = ("new_instance", "delete", "disable_touch_indicators")
_STR_FIELDS = ("url", "source_app")
_MAPPING_FIELDS = ("launch_args", "language_and_locale", "permissions")

CreatePayloadFile = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class LaunchRequest:
    new_instance: Optional[bool] = None
    delete: Optional[bool] = None
    url: Optional[str] = None
    source_app: Optional[str] = None
    user_notification: Any = None
    user_activity: Any = None
    launch_args: Optional[Mapping[str, Any]] = None
    language_and_locale: Optional[Mapping[str, Any]] = None
    permissions: Optional[Mapping[str, Any]] = None
    disable_touch_indicators: Optional[bool] = None

    def __post_init__(self) -> None:
        for name in _BOOL_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, bool):
                raise InvalidArgumentError(f"{name} must be a bool, got {type(value).__name__}")
        for name in _STR_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise InvalidArgumentError(f"{name} must be a string, got {type(value).__name__}")
        for name in _MAPPING_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Mapping):
                raise InvalidArgumentError(f"{name} must be a mapping, got {type(value).__name__}")

    @classmethod
    def from_params(cls, params: Any = None) -> "LaunchRequest":
        """Build a request from a params mapping (camelCase or snake_case keys)."""
        if params is None:
            return cls()
        if isinstance(params, LaunchRequest):
            return params
        if not isinstance(params, Mapping):
            raise InvalidArgumentError(
                f"launch params must be a mapping, got {type(params).__name__}"
            )

        kwargs: Dict[str, Any] = {}
        for key, value in params.items():
            field_name = _PARAM_FIELDS.get(key)
            if field_name is None:
                raise InvalidArgumentError(f"unknown launch param: {key}")
            if value is not None:
                kwargs[field_name] = value
        return cls(**kwargs)

    def payload_params(self) -> Tuple[str, ...]:
        """Names of the payload params (url/userNotification/userActivity) that are set."""
        values = {
            "url": self.url,
            "userNotification": self.user_notification,
            "userActivity": self.user_activity,
        }
        return tuple(name for name in PAYLOAD_PARAMS if values[name] is not None)

    @property
    def has_payload(self) -> bool:
        return bool(self.payload_params())

    def validate(self) -> None:
        names = self.payload_params()
        if len(names) > 1:
            raise ConflictingLaunchParamsError(
                f"only one of {', '.join(PAYLOAD_PARAMS)} may be set, got: {', '.join(names)}"
            )


async def compose_launch_payload(
    session: SessionConfig,
    prebaked: Mapping[str, Any],
    request: LaunchRequest,
    *,
    create_payload_file: CreatePayloadFile,
) -> Dict[str, Any]:
    """Merge session keys, prebaked args and onsite args into a launch payload.

    Onsite args win over prebaked ones. Notification/activity payloads are
    written to a data file through `create_payload_file` and referenced by URL.
    """
    request.validate()

    payload: Dict[str, Any] = {
        SERVER_KEY: session.server,
        SESSION_ID_KEY: session.session_id,
    }
    payload.update(prebaked)
    if request.launch_args:
        payload.update(request.launch_args)

    if request.url is not None:
        payload[URL_OVERRIDE_KEY] = request.url
        if request.source_app is not None:
            payload[SOURCE_APP_OVERRIDE_KEY] = request.source_app
    elif request.user_notification is not None:
        payload[USER_NOTIFICATION_DATA_URL_KEY] = await create_payload_file(
            request.user_notification
        )
    elif request.user_activity is not None:
        payload[USER_ACTIVITY_DATA_URL_KEY] = await create_payload_file(request.user_activity)

    if request.disable_touch_indicators:
        payload[DISABLE_TOUCH_INDICATORS_KEY] = True

    logger.debug("composed launch payload: %s", payload)
    return payload


def build_delivery(request: LaunchRequest, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Payload handed to an already running process instead of a cold launch."""
    delivery: Dict[str, Any] = {"delayPayload": True}
    if request.url is not None:
        delivery["url"] = request.url
        if request.source_app is not None:
            delivery["sourceApp"] = request.source_app
        return delivery

    for name in request.payload_params():
        key = _DATA_URL_KEYS[name]
        delivery[key] = payload[key]
    return delivery
