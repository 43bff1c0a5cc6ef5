"""
JudgeSync - CourtListener Client

Async client for the CourtListener REST API (v4). Classifies every failure
into the sync error taxonomy so callers never look at status codes:

    401 / 403          -> AuthenticationError (fatal for the run)
    404                -> None
    429 / 5xx / network -> TransientUpstreamError (retry_after from the header)
    bad URL (cursor)   -> UpstreamError
    other 4xx          -> UpstreamError

Rate limiting and circuit breaking are the caller's job; this client makes
exactly one HTTP request per method call.

Usage:
    async with CourtListenerClient() as client:
        person = await client.get_person("1234")
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import httpx

from .. import __version__
from ..config import get_settings
from ..core.errors import AuthenticationError, TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass
class Page:
    results: list[dict[str, Any]] = field(default_factory=list)
    next_url: Optional[str] = None


class CourtListenerClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.courtlistener_api_key
        self.base_url = (base_url or settings.courtlistener_base_url).rstrip("/")
        self.timeout = timeout or settings.COURTLISTENER_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "CourtListenerClient":
        headers = {
            "Accept": "application/json",
            "User-Agent": f"JudgeSync/{__version__}",
        }
        if self.api_key:
            headers["Authorization"] = f"Token {self.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Transport
    # =========================================================================

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Optional[dict[str, Any]]:
        if self._client is None:
            raise RuntimeError("CourtListenerClient not initialized. Use async with.")

        try:
            response = await self._client.get(path, params=params)
        except httpx.InvalidURL as e:
            raise UpstreamError(f"Invalid CourtListener URL {path}: {e}") from e
        except httpx.RequestError as e:
            raise TransientUpstreamError(f"CourtListener request failed: {type(e).__name__}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"CourtListener rejected credentials ({status})")
        if status == 404:
            return None
        if status == 429 or status >= 500:
            raise TransientUpstreamError(
                f"CourtListener returned {status}",
                status_code=status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            raise UpstreamError(f"CourtListener returned {status} for {path}")

        try:
            return response.json()
        except ValueError as e:
            raise TransientUpstreamError("CourtListener returned invalid JSON") from e

    async def _get_page(self, path_or_url: str, params: dict[str, Any] | None = None) -> Page:
        data = await self._get(path_or_url, params)
        if not data:
            return Page()
        return Page(results=list(data.get("results") or []), next_url=data.get("next"))

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def list_courts(self, cursor: str | None = None) -> Page:
        """One page of /courts/. Pass the previous page's next_url to continue."""
        if cursor:
            return await self._get_page(cursor)
        return await self._get_page("/courts/", {"page_size": DEFAULT_PAGE_SIZE})

    async def get_court(self, court_id: str) -> Optional[dict[str, Any]]:
        return await self._get(f"/courts/{court_id}/")

    async def get_person(self, person_id: str) -> Optional[dict[str, Any]]:
        return await self._get(f"/people/{person_id}/")

    async def list_opinions_by_author(
        self,
        author_id: str,
        filed_after: date | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> Page:
        """One page of opinions written by a judge, newest first."""
        if cursor:
            return await self._get_page(cursor)
        params: dict[str, Any] = {
            "author": author_id,
            "ordering": "-date_created",
            "page_size": min(page_size, DEFAULT_PAGE_SIZE),
        }
        if filed_after:
            params["cluster__date_filed__gte"] = filed_after.isoformat()
        return await self._get_page("/opinions/", params)

    async def get_cluster(self, cluster_id: str) -> Optional[dict[str, Any]]:
        return await self._get(f"/clusters/{cluster_id}/")

    async def get_opinion(self, opinion_id: str) -> Optional[dict[str, Any]]:
        return await self._get(f"/opinions/{opinion_id}/")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
