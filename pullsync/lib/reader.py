"""Remote table readers.

A reader executes a ``Query`` against the remote table service and returns
one page of rows. Transport retry belongs here: the pull strategies treat
each ``read`` as a single atomic call.

Example:
    from pullsync.lib.reader import HttpTableReader

    reader = HttpTableReader("https://myapp.azurewebsites.net", api_key="${APP_KEY}")
    rows = reader.read(Query(table_name="todoitem").with_top(50))
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
import requests_toolbelt
import tenacity
from requests_toolbelt.utils.user_agent import user_agent
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pullsync.lib.errors import ConfigurationError, RemoteReadError
from pullsync.lib.query import Query

logger = logging.getLogger(__name__)

__all__ = ["HttpTableReader", "RemoteReader", "API_VERSION"]

API_VERSION = "2.0.0"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

_USER_AGENT = user_agent(
    "pullsync",
    "1.0.0",
    extras=[
        ("httpx", getattr(httpx, "__version__", "unknown")),
        ("tenacity", getattr(tenacity, "__version__", "unknown")),
        ("requests-toolbelt", getattr(requests_toolbelt, "__version__", "unknown")),
    ],
)


class RemoteReader(Protocol):
    """Anything that can execute a query and return one page of rows."""

    def read(self, query: Query) -> List[Dict[str, Any]]:
        ...


class HttpTableReader:
    """Read pages from ``{base_url}/tables/{table}`` with OData parameters."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError("base_url is required", field="base_url")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def __enter__(self) -> "HttpTableReader":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "ZUMO-API-VERSION": API_VERSION,
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
        }
        if self.api_key:
            headers["X-ZUMO-APPLICATION"] = self.api_key
        return headers

    def read(self, query: Query) -> List[Dict[str, Any]]:
        """Execute one page query.

        Raises:
            RemoteReadError: If the request fails after retries or the body is
                not a row list
        """
        if not query.table_name:
            raise ConfigurationError("Query has no table name", field="table_name")

        endpoint = f"/tables/{query.table_name}"
        params = query.to_odata_params()

        try:
            response = self._fetch_with_retry(endpoint, params)
        except httpx.HTTPStatusError as exc:
            raise RemoteReadError(
                f"Remote table returned HTTP {exc.response.status_code}",
                url=str(exc.request.url),
                status_code=exc.response.status_code,
                cause=exc,
                table=query.table_name,
            ) from exc
        except httpx.RequestError as exc:
            raise RemoteReadError(
                "Could not reach the remote table",
                url=f"{self.base_url}{endpoint}",
                cause=exc,
                table=query.table_name,
            ) from exc

        return self._extract_rows(response, query.table_name)

    def _extract_rows(self, response: httpx.Response, table: str) -> List[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteReadError(
                "Remote table returned invalid JSON",
                url=str(response.request.url),
                status_code=response.status_code,
                cause=exc,
                table=table,
            ) from exc

        # $inlinecount responses wrap rows in {"results": [...], "count": n}
        if isinstance(data, dict) and "results" in data:
            data = data["results"]

        if not isinstance(data, list):
            raise RemoteReadError(
                "Remote table response is not a list of rows",
                url=str(response.request.url),
                status_code=response.status_code,
                table=table,
                details={"body_type": type(data).__name__},
            )

        logger.debug("Read %d rows from %s", len(data), table)
        return data

    def _fetch_with_retry(self, endpoint: str, params: Dict[str, str]) -> httpx.Response:
        @retry(
            stop=stop_after_attempt(max(self.max_retries, 1)),
            wait=wait_exponential(
                multiplier=self.backoff_factor,
                min=0.5,
                max=30,
            ),
            retry=retry_if_exception(self._should_retry),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        def do_request() -> httpx.Response:
            logger.debug("Fetching %s with params %s", endpoint, params)
            response = self._client.get(
                endpoint,
                headers=self._headers(),
                params=params,
                timeout=self.timeout,
            )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 429:
                    self._respect_retry_after(exc.response)
                raise
            return response

        return do_request()

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(exc, httpx.RequestError)

    def _respect_retry_after(self, response: httpx.Response) -> None:
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return
        try:
            wait_seconds = float(retry_after)
        except (TypeError, ValueError):
            return
        if wait_seconds > 0:
            logger.warning(
                "Rate limited by remote table; sleeping %.1f seconds before retrying",
                wait_seconds,
            )
            time.sleep(wait_seconds)
