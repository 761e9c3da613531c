from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class GraphClientError(RuntimeError):
    """
    Raised when the delegated access token is unusable or when a Graph API
    call fails in a non-recoverable way.
    """


def looks_like_access_token(token: Optional[str]) -> bool:
    """
    Cheap shape check for a delegated access token handed over by the
    browser: a JWT of at least 50 characters with three dot-separated parts.

    Signature and audience are verified by Graph itself on first use.
    """
    if not token or len(token) < 50:
        return False
    return len(token.split(".")) == 3


class GraphClient:
    """
    Minimal Microsoft Graph API client using *delegated* permissions.

    Responsibilities
    ----------------
    - Carry the signed-in user's access token (obtained by the frontend).
    - Provide thin convenience methods for GET requests to Graph, including
      following `@odata.nextLink` paging.
    - Avoid leaking HTTP client details into the rest of the codebase.

    Notes
    -----
    - No client secret is involved; the token is never refreshed here. An
      expired token surfaces as a GraphClientError (HTTP 401 from Graph).
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://graph.microsoft.com",
        timeout_seconds: float = 10.0,
    ) -> None:
        if not looks_like_access_token(access_token):
            raise GraphClientError("Invalid access token provided")

        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def _build_url(self, path: str) -> str:
        # If path is not an absolute URL, treat it as relative to base_url.
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Low-level helper for issuing an authenticated HTTP request to Graph.

        Parameters
        ----------
        method:
            HTTP method (GET, POST, etc.).
        path:
            Either an absolute URL or a path relative to the configured base_url.
        params:
            Optional query string parameters.

        Returns
        -------
        httpx.Response
            The raw HTTP response object.
        """
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.request(
                    method=method.upper(),
                    url=self._build_url(path),
                    headers=headers,
                    params=params,
                )
        except httpx.HTTPError as exc:
            raise GraphClientError(f"Graph {method.upper()} {path} failed: {exc}") from exc

        return resp

    async def get_json(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Issue a GET request to a Graph endpoint and return the JSON payload.

        Raises GraphClientError on non-2xx responses.
        """
        resp = await self._request("GET", path, params=params)
        if resp.status_code // 100 != 2:
            raise GraphClientError(
                f"Graph GET failed (status={resp.status_code}): {resp.text}"
            )
        return resp.json()

    async def get_collection(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        GET a Graph collection and return the concatenated `value` arrays of
        every page.
        """
        items: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        next_params = params

        while next_path:
            payload = await self.get_json(next_path, params=next_params)
            items.extend(payload.get("value", []))
            next_path = payload.get("@odata.nextLink")
            # nextLink already embeds the original query string.
            next_params = None

        logger.debug("Retrieved %d items from %s", len(items), path)
        return items


def build_graph_client(access_token: str) -> GraphClient:
    """
    Construct a GraphClient for one request, wired to application settings.
    """
    settings = get_settings()
    return GraphClient(
        access_token=access_token,
        base_url=settings.GRAPH_BASE_URL,
        timeout_seconds=settings.GRAPH_TIMEOUT_SECONDS,
    )
