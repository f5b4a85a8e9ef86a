"""Bounded pull queries against the biosensor range endpoint.

Endpoint:
    GET {api_base_url}/{range_resource}/live
        ?start_datetime=2026-01-03T22:18:21.700Z
        &end_datetime=2026-01-04T22:18:21.700Z

Response:
    {"data": [<record>, ...], "count": 1234, "limit": 10000}

``count`` and ``limit`` are optional.  When the returned count reaches the
limit the result is flagged ``truncated``; more data may exist in the range.

The tunnelling layer in front of the server (ngrok free tier) serves an HTML
interstitial unless the bypass header is sent, so every request carries it.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from src.config import Settings
from src.livesync.base import FetchResult, TimeRange, format_instant, parse_records
from src.livesync.errors import FetchError, MalformedResponseError

logger = logging.getLogger("livesync.fetcher")

DEFAULT_RECORD_LIMIT = 10000


def build_query(time_range: TimeRange) -> dict[str, str]:
    """Return the query parameters for a range request."""
    return {
        "start_datetime": format_instant(time_range.start),
        "end_datetime": format_instant(time_range.end),
    }


def _positive_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number > 0 else None


def parse_range_response(body: Any, default_limit: int = DEFAULT_RECORD_LIMIT) -> FetchResult:
    """Validate a decoded range response and build a FetchResult.

    This is a pure function with no I/O.

    Args:
        body:          Decoded JSON body.
        default_limit: Limit assumed when the server does not advertise one.

    Returns:
        FetchResult with every returned record (admissible or not).

    Raises:
        MalformedResponseError: If the body is not an object with a ``data`` list.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError(
            f"Expected a JSON object from the range endpoint, got {type(body).__name__}"
        )
    data = body.get("data")
    if not isinstance(data, list):
        raise MalformedResponseError("Range response has no 'data' list")

    records = parse_records(data)
    count = _positive_int(body.get("count")) or len(data)
    limit = _positive_int(body.get("limit")) or default_limit
    return FetchResult(records=records, count=count, limit=limit)


class RangeFetcher:
    """Run one range query per call.

    Configuration is passed in explicitly so the fetcher can be exercised
    without any ambient settings.

    Args:
        endpoint:      Full URL of the ``/live`` range endpoint.
        headers:       Extra request headers (tunnel bypass).
        default_limit: Record limit assumed when the server omits one.
        timeout:       Request timeout in seconds.
        http_client:   Optional pre-configured httpx client (for testing or
                       connection reuse).  Not closed by the fetcher.
    """

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str] | None = None,
        default_limit: int = DEFAULT_RECORD_LIMIT,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._headers = dict(headers or {})
        self._default_limit = default_limit
        self._timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "RangeFetcher":
        return cls(
            endpoint=settings.range_endpoint,
            headers=settings.bypass_headers,
            default_limit=settings.default_record_limit,
            timeout=settings.request_timeout_seconds,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def fetch(self, time_range: TimeRange) -> FetchResult:
        """Query the endpoint for ``time_range``.

        Raises:
            FetchError:             Transport failure or non-2xx status.
            MalformedResponseError: Body is not the expected JSON shape.
        """
        params = build_query(time_range)
        logger.debug("Fetching range %s → %s", params["start_datetime"], params["end_datetime"])

        response = await self._get(params)

        if not response.is_success:
            raise FetchError(
                f"Range endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
            raise MalformedResponseError(f"Range response is not valid JSON: {exc}") from exc

        result = parse_range_response(body, self._default_limit)
        logger.info(
            "Fetched %d records (count=%d, limit=%d)",
            len(result.records),
            result.count,
            result.limit,
        )
        return result

    async def _get(self, params: dict[str, str]) -> httpx.Response:
        try:
            if self._http_client:
                return await self._http_client.get(
                    self._endpoint, params=params, headers=self._headers, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.get(self._endpoint, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"Range request failed: {exc}") from exc
