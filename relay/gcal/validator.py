"""Classification of inbound Google push callbacks.

Pure: no I/O. Checks run in a fixed order (token, state, resource id,
expiration, channel id) and the first failure names its header.
"""

from __future__ import annotations

from collections.abc import Mapping

from relay.errors import (
    ChannelTokenMismatch,
    InvalidHeaderError,
    MissingHeaderError,
    UnknownResourceState,
)
from relay.models import ChangedEvent, ResourceState, SyncEvent
from utils import parse_timestamp

CHANNEL_TOKEN = "X-Goog-Channel-Token"
RESOURCE_STATE = "X-Goog-Resource-State"
RESOURCE_ID = "X-Goog-Resource-Id"
CHANNEL_EXPIRATION = "X-Goog-Channel-Expiration"
CHANNEL_ID = "X-Goog-Channel-Id"


def _header(headers: Mapping[str, str | None], name: str) -> str | None:
    v = headers.get(name)
    if v is None:
        lowered = name.lower()
        for k, val in headers.items():
            if k.lower() == lowered:
                v = val
                break
    return v.strip() if isinstance(v, str) else None


def _required(headers: Mapping[str, str | None], name: str) -> str:
    v = _header(headers, name)
    if not v:
        raise MissingHeaderError(name, v)
    return v


def validate_callback(
    headers: Mapping[str, str | None], *, secret: str
) -> SyncEvent | ChangedEvent:
    token = _header(headers, CHANNEL_TOKEN)
    if not token or token != secret:
        raise ChannelTokenMismatch(CHANNEL_TOKEN)

    raw_state = _header(headers, RESOURCE_STATE)
    try:
        state = ResourceState(raw_state)
    except ValueError:
        raise UnknownResourceState(RESOURCE_STATE, raw_state) from None

    resource_id = _required(headers, RESOURCE_ID)
    raw_expiration = _required(headers, CHANNEL_EXPIRATION)
    try:
        expiration = parse_timestamp(raw_expiration)
    except ValueError:
        raise InvalidHeaderError(
            CHANNEL_EXPIRATION, raw_expiration, "not a timestamp"
        ) from None
    channel_id = _required(headers, CHANNEL_ID)

    if state is ResourceState.SYNC:
        return SyncEvent(
            resource_id=resource_id, channel_id=channel_id, channel_expiration=expiration
        )
    return ChangedEvent(resource_id=resource_id, channel_id=channel_id)
