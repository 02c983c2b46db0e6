"""Async HTTP client for the map data API."""

from typing import Any, Optional, Union

import httpx
from loguru import logger

from electoral_atlas.config import Settings
from electoral_atlas.errors import FetchTimeout, error_from_payload


class AtlasApiClient:
    """Fetches boundaries, statistics and point lookups over HTTP.

    Every request uses the configured timeout and is retried once on a
    timeout or transport error. A timeout on the last attempt raises
    FetchTimeout. Error responses are turned back into the matching
    AtlasError.

    Args:
        settings: Application settings (uses ``settings.api``)
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_config = settings.api
        self._client = httpx.AsyncClient(
            base_url=self.api_config.base_url,
            timeout=self.api_config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AtlasApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        attempts = 1 + max(0, self.api_config.retries)
        last_error: Optional[httpx.TransportError] = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(path, params=query)
                break
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "GET {} failed on attempt {}/{}: {}", path, attempt, attempts, type(e).__name__
                )
        else:
            if isinstance(last_error, httpx.TimeoutException):
                logger.error("GET {} timed out after {} attempts", path, attempts)
                raise FetchTimeout(path, attempts) from last_error
            raise last_error  # type: ignore[misc]

        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            error = error_from_payload(response.status_code, payload)
            if error is not None:
                logger.debug("GET {} -> {} {}", path, response.status_code, type(error).__name__)
                raise error
            response.raise_for_status()

        return response.json()

    async def get_boundaries(self, level: int, parent_id: Optional[int] = None) -> dict[str, Any]:
        """Boundary FeatureCollection for a level, optionally children of ``parent_id``."""
        return await self._get_json("/boundaries", {"level": level, "parentId": parent_id})

    async def get_metric_data(
        self,
        domain: str,
        level: int,
        parent_id: Optional[int] = None,
        entity_id: Optional[Union[int, str]] = None,
        **filters: Any,
    ) -> dict[str, Any]:
        """Per-unit statistics ``{count, data: [...]}`` without geometry."""
        params = {"level": level, "parentId": parent_id, "entityId": entity_id}
        params.update(filters)
        return await self._get_json(f"/metrics/{domain}", params)

    async def get_aggregated_results(
        self, entity_id: Union[int, str], level: int, parent_id: Optional[int] = None
    ) -> dict[str, Any]:
        """Server-joined FeatureCollection of election results with ``bbox``."""
        return await self._get_json(
            f"/map/aggregated/{entity_id}", {"level": level, "parentId": parent_id}
        )

    async def get_point_lookup(
        self, lng: float, lat: float, level: Optional[int] = None
    ) -> dict[str, Any]:
        """Units containing a point, finest first: ``{coordinates, units, primary}``."""
        return await self._get_json("/map/point", {"lng": lng, "lat": lat, "level": level})
