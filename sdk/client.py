"""
GhostRegime Python SDK.

A small client for the GhostRegime REST API.

Usage:
    >>> client = GhostRegimeClient("http://localhost:8000")
    >>> today = client.today()
    >>> print(f"{today['regime']} stocks={today['stocks_scale']}")

    >>> for row in client.history(start_date="2024-01-02", end_date="2024-01-04"):
    ...     print(row['date'], row['regime'])

    >>> client.diff(date="2024-01-04")
    {'date': '2024-01-04', 'prev_date': '2024-01-03', 'changes': 'NO_CHANGES'}

Classes:
    GhostRegimeClient: Main SDK client class.
    GhostRegimeClientError: Raised with the server's error code.

Dependencies:
    requests (pip install requests)
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

DateLike = Union[str, date, None]


def _iso(value: DateLike) -> Optional[str]:
    if isinstance(value, date):
        return value.isoformat()
    return value


class GhostRegimeClientError(Exception):
    """Error from GhostRegime API operations.

    Attributes:
        code: Server error code (e.g. ``DATE_NOT_FOUND``), or
            ``CONNECTION_ERROR`` when the server was never reached.
        status_code: HTTP status, None for connection failures.
        payload: Parsed error body.
    """

    def __init__(
        self,
        message: str,
        code: str = "CONNECTION_ERROR",
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.payload = payload or {}


class GhostRegimeClient:
    """Python SDK client for the GhostRegime API.

    Connection failures and 5xx responses are retried with exponential
    backoff; 4xx responses raise immediately.

    Args:
        base_url: GhostRegime API base URL.
        timeout: Request timeout in seconds.
        max_retries: Maximum attempts per request.
        backoff: Base delay in seconds between attempts.

    Example:
        >>> with GhostRegimeClient() as client:
        ...     client.explain("2024-01-03")['debug_votes'][0]['name']
        'spy_tr63'
    """

    PREFIX = "/api/ghostregime"

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        max_retries: int = 3,
        backoff: float = 1.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff = backoff

        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    # ── Core Request Method ───────────────────────────────────

    @staticmethod
    def _error_from(resp: requests.Response) -> GhostRegimeClientError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("error") or f"HTTP_{resp.status_code}"
        message = body.get("message") or f"HTTP {resp.status_code}"
        return GhostRegimeClientError(message, code=code, status_code=resp.status_code, payload=body)

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` with retry logic.

        Raises:
            GhostRegimeClientError: On 4xx, or once retries are exhausted.
        """
        url = f"{self._base_url}{path}"
        last_error: Optional[GhostRegimeClientError] = None

        for attempt in range(self._max_retries):
            try:
                resp = self._session.request(
                    method="GET",
                    url=url,
                    params=params,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                last_error = GhostRegimeClientError(f"Request to {url} failed: {exc}")
            else:
                if resp.status_code < 400:
                    return resp.json()
                last_error = self._error_from(resp)
                if resp.status_code < 500:
                    raise last_error

            if attempt < self._max_retries - 1:
                delay = self._backoff * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}): {last_error}. "
                    f"Retrying in {delay}s..."
                )
                time.sleep(delay)

        raise last_error

    def _get(self, path: str, **params) -> Any:
        """GET request helper; None params are dropped."""
        clean_params = {k: v for k, v in params.items() if v is not None}
        return self._request(f"{self.PREFIX}{path}", params=clean_params)

    @staticmethod
    def _flag(value: bool) -> Optional[str]:
        return "true" if value else None

    # ── Endpoints ─────────────────────────────────────────────

    def health(self) -> Dict[str, Any]:
        """Health payload (status OK or WARN; NOT_READY raises)."""
        return self._get("/health")

    def today(
        self,
        debug: bool = False,
        force: bool = False,
        as_of: DateLike = None,
    ) -> Dict[str, Any]:
        """Current snapshot row.

        Args:
            debug: Include per-signal votes and diagnostics.
            force: Recompute synchronously on the server.
            as_of: Target date for the recompute.
        """
        return self._get(
            "/today",
            debug=self._flag(debug),
            force=self._flag(force),
            date=_iso(as_of),
        )

    def history(self, start_date: DateLike = None, end_date: DateLike = None) -> List[Dict[str, Any]]:
        """Rows between inclusive dates, ascending."""
        return self._get("/history", startDate=_iso(start_date), endDate=_iso(end_date))

    def explain(self, day: DateLike) -> Dict[str, Any]:
        """Row for ``day`` with ``debug_votes``."""
        return self._get("/explain", date=_iso(day))

    def diff(self, date: DateLike = None, prev: DateLike = None) -> Dict[str, Any]:
        """Day-over-day changes; ``changes`` is ``"NO_CHANGES"`` when nothing moved."""
        return self._get("/diff", date=_iso(date), prev=_iso(prev))

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> "GhostRegimeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"GhostRegimeClient(base_url='{self._base_url}')"
