"""Classify inbound push-channel messages.

The push channel is mostly a doorbell: an update notification means "re-pull
the range", not "here is the data".  The router only decides what kind of
message arrived; acting on it is the controller's job.

Classification order (first match wins):
    1. ``type`` is a known update tag          → REFETCH
    2. ``type`` is a liveness echo (``pong``)   → LIVENESS
    3. object carrying a ``data`` list          → DIRECT_DATA
    4. bare list of record objects              → DIRECT_DATA
    5. anything else                            → IGNORED

Unparseable text yields INVALID with a ProtocolError attached.  It never
affects the connection.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from src.livesync.base import Measurement, parse_records
from src.livesync.errors import ProtocolError

logger = logging.getLogger("livesync.router")

DEFAULT_UPDATE_TYPES: frozenset[str] = frozenset({"ouratimeseries_update", "heartrate_update"})
DEFAULT_LIVENESS_TYPES: frozenset[str] = frozenset({"pong"})


class NotificationKind(str, Enum):
    REFETCH = "refetch"
    LIVENESS = "liveness"
    DIRECT_DATA = "direct_data"
    IGNORED = "ignored"
    INVALID = "invalid"


@dataclass(frozen=True)
class Notification:
    """Result of routing one inbound message.

    Attributes:
        kind:    Category the message was classified into.
        records: Parsed payload for DIRECT_DATA, empty otherwise.
        message: Free-text ``message`` field (liveness echoes carry one).
        error:   ProtocolError for INVALID messages.
    """

    kind: NotificationKind
    records: tuple[Measurement, ...] = ()
    message: str | None = None
    error: ProtocolError | None = field(default=None, compare=False)


class NotificationRouter:
    """Turn raw text frames into ``Notification`` values.

    Args:
        update_types:   ``type`` tags that mean "new data is available".
        liveness_types: ``type`` tags that only confirm the server is alive.
    """

    def __init__(
        self,
        update_types: Iterable[str] = DEFAULT_UPDATE_TYPES,
        liveness_types: Iterable[str] = DEFAULT_LIVENESS_TYPES,
    ) -> None:
        self._update_types = frozenset(update_types)
        self._liveness_types = frozenset(liveness_types)
        self.stats: Counter[NotificationKind] = Counter()

    def route(self, raw: str) -> Notification:
        notification = self._classify(raw)
        self.stats[notification.kind] += 1
        return notification

    def _classify(self, raw: str) -> Notification:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Discarding unparseable push message: %s", exc)
            return Notification(
                kind=NotificationKind.INVALID,
                error=ProtocolError(f"Failed to parse push message: {exc}", raw=raw),
            )

        if isinstance(payload, dict):
            return self._classify_object(payload)

        if isinstance(payload, list) and all(isinstance(item, dict) for item in payload):
            logger.debug("Direct record array received (%d records)", len(payload))
            return Notification(kind=NotificationKind.DIRECT_DATA, records=parse_records(payload))

        logger.debug("Ignoring push message of type %s", type(payload).__name__)
        return Notification(kind=NotificationKind.IGNORED)

    def _classify_object(self, payload: dict[str, Any]) -> Notification:
        msg_type = payload.get("type")
        if not isinstance(msg_type, str):
            msg_type = None
        message = payload.get("message")
        message = str(message) if message is not None else None

        if msg_type in self._update_types:
            logger.info("Update notification %r received", msg_type)
            return Notification(kind=NotificationKind.REFETCH, message=message)

        if msg_type in self._liveness_types:
            logger.debug("Liveness echo from server: %s", message)
            return Notification(kind=NotificationKind.LIVENESS, message=message)

        data = payload.get("data")
        if isinstance(data, list):
            logger.debug("Direct data payload received (%d records)", len(data))
            return Notification(
                kind=NotificationKind.DIRECT_DATA,
                records=parse_records(data),
                message=message,
            )
        if data is not None:
            logger.warning("Ignoring push message with non-list data field (type=%r)", msg_type)

        return Notification(kind=NotificationKind.IGNORED, message=message)
