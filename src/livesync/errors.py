"""Error taxonomy for the live sync client.

None of these is fatal.  Transport errors drive the reconnect loop, protocol
errors discard a single message, fetch errors are surfaced until the next
trigger retries, and the limit warning rides alongside a valid dataset.
"""

from __future__ import annotations


class LiveSyncError(Exception):
    """Base class for all live sync failures."""


class TransportError(LiveSyncError):
    """The push channel closed, failed to open, or errored."""


class ProtocolError(LiveSyncError):
    """An inbound push message could not be parsed."""

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class FetchError(LiveSyncError):
    """A range query failed in transport or returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(FetchError):
    """A range query succeeded but its body was not the expected JSON shape."""


class LimitExceededWarning(UserWarning):
    """The server returned as many records as its limit allows.

    More data may exist in the requested range.  Surfaced next to the
    dataset, never raised.
    """

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(
            f"API record limit reached: the query returned {count} records "
            f"(limit {limit}). There may be more data in the range that is "
            "not shown; try narrowing the date range."
        )
