"""
Async HTTP client for the remote CRM.

Every endpoint authenticates with two query parameters: the API token
(`apitoken`) and the group id (`i`). The token is never written to logs or
exception messages; errors mention only the method and path.

No timeout is layered on top of httpx's transport default.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from crmsync.errors import ConfigurationError, RemoteAPIError

logger = logging.getLogger(__name__)

USER_AGENT = "crmsync/0.1.0"


class RemoteClient:
    """
    Thin async wrapper over httpx for the CRM endpoints the pipelines use.

    Methods return the decoded JSON body untouched; envelope normalization
    is the caller's job (see crmsync.remote.envelope).
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        group_id: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: API root, with or without a trailing slash.
            api_token: Value sent as the `apitoken` query parameter.
            group_id: Value sent as the `i` query parameter.
            http: Optional pre-built httpx client (tests pass one with a
                  MockTransport).
        """
        self.base_url = (base_url or "").rstrip("/")
        self.api_token = api_token or ""
        self.group_id = str(group_id or "")
        self._http = http or httpx.AsyncClient(headers={"User-Agent": USER_AGENT})

    @classmethod
    def from_settings(cls, settings) -> "RemoteClient":
        return cls(
            settings.remote_base_url,
            settings.remote_api_token,
            settings.remote_group_id,
        )

    def ensure_configured(self) -> None:
        """
        Raises:
            ConfigurationError: if the base URL, token or group id is missing.
        """
        missing = [
            name
            for name, value in (
                ("REMOTE_BASE_URL", self.base_url),
                ("REMOTE_API_TOKEN", self.api_token),
                ("REMOTE_GROUP_ID", self.group_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Remote API is not configured; missing: " + ", ".join(missing)
            )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        query = {"apitoken": self.api_token, "i": self.group_id}
        if params:
            query.update(params)
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("%s /%s", method, path.lstrip("/"))

        try:
            response = await self._http.request(
                method,
                url,
                params=query,
                json=json,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise RemoteAPIError(
                f"{method} /{path.lstrip('/')} failed: {exc.__class__.__name__}"
            ) from exc

        if not response.is_success:
            raise RemoteAPIError(
                f"{method} /{path.lstrip('/')} returned {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteAPIError(
                f"{method} /{path.lstrip('/')} returned a body that is not JSON",
                status_code=response.status_code,
            ) from exc

    async def get_funnels(self) -> Any:
        return await self._request("GET", "crm")

    async def get_funnel_columns(self, funnel_id: int) -> Any:
        return await self._request("GET", "crmfastloadv2", params={"id": funnel_id})

    async def get_opportunities_page(
        self,
        funnel_id: int,
        column_id: int,
        *,
        page: int,
        limit: int,
        status_filter: Optional[List[str]] = None,
    ) -> Any:
        """
        Fetch one page of opportunities for a funnel column.

        Args:
            funnel_id: Funnel the column belongs to (part of the path).
            column_id: Column to list.
            page: 0-based page index.
            limit: Page size.
            status_filter: Statuses to include, e.g. ["open", "gain", "lost"].
        """
        payload = {
            "filterByUsers": None,
            "filterByStatus": list(status_filter or []),
            "filterByExpectedCloseDate": None,
            "filters": [],
            "search": "",
            "page": page,
            "limit": limit,
            "columnId": column_id,
            "onlyArchived": False,
            "searchBy": "opportunity",
        }
        return await self._request("POST", f"crm/opportunities/{funnel_id}", json=payload)

    async def get_loss_reasons(self) -> Any:
        return await self._request("GET", "crmlossreason")

    async def get_departments(self) -> Any:
        # "departament" is the remote's spelling
        return await self._request("GET", "departament")

    async def get_users(self) -> Any:
        """Fetch non-blocked users only."""
        return await self._request("GET", "user", params={"noblock": 1})
