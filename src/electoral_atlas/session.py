"""Map session: ties the cache, navigator, prefetcher and locator to the API client."""

import asyncio
from typing import Any, Optional, Union

from loguru import logger

from electoral_atlas.cache import CacheKey, LevelCache
from electoral_atlas.client import AtlasApiClient
from electoral_atlas.config import Settings
from electoral_atlas.join import index_by_unit, join_boundaries
from electoral_atlas.locator import PointLocator
from electoral_atlas.navigator import ROOT_LEVEL, DrillDownNavigator
from electoral_atlas.prefetch import ChildLevelPrefetcher, child_keys


class MapSession:
    """One user's map: what is shown, what is cached and how clicks navigate.

    Geometry and statistics are fetched concurrently and joined locally.
    Each metric layer is one visual slot; when a newer load starts for a
    slot, older in-flight loads for it are discarded on arrival (last request
    wins). The underlying I/O is not cancelled.

    Args:
        client: API client
        settings: Application settings
        domain: Metric domain shown ("results", "demographics", "issues")
        entity_id: Election id or census year for the domain
        filters: Extra domain filters passed to the metric endpoint
    """

    def __init__(
        self,
        client: AtlasApiClient,
        settings: Settings,
        domain: str = "results",
        entity_id: Optional[Union[int, str]] = None,
        filters: Optional[dict[str, Any]] = None,
        cache: Optional[LevelCache] = None,
    ):
        self.client = client
        self.settings = settings
        self.domain = domain
        self.entity_id = entity_id
        self.filters = dict(filters or {})

        self.cache = cache or LevelCache(ttl_seconds=settings.cache.ttl_seconds)
        self.navigator = DrillDownNavigator(
            settings.country_name,
            root_level=ROOT_LEVEL,
            requires_data=settings.aggregation.drill_down_requires_data,
        )
        self.locator = PointLocator(
            self.cache, respect_holes=settings.aggregation.respect_polygon_holes
        )
        self.prefetcher = ChildLevelPrefetcher(
            self.cache,
            self.fetch_view,
            batch_size=settings.cache.prefetch_batch_size,
            batch_delay=settings.cache.prefetch_batch_delay,
        )

        self.view: Optional[dict[str, Any]] = None
        self.view_key: Optional[CacheKey] = None
        self.loading = False
        self._generations: dict[str, int] = {}
        # Advanced by switch_basemap; loads started under an older epoch are dropped
        self._epoch = 0

    @property
    def variant(self) -> Optional[str]:
        parts = [] if self.entity_id is None else [str(self.entity_id)]
        parts += [f"{name}={self.filters[name]}" for name in sorted(self.filters)]
        return "|".join(parts) or None

    def key_for(self, level: int, parent_id: Optional[int] = None) -> CacheKey:
        return CacheKey(domain=self.domain, level=level, parent_id=parent_id, variant=self.variant)

    def _next_generation(self, slot: str) -> int:
        self._generations[slot] = self._generations.get(slot, 0) + 1
        return self._generations[slot]

    def _is_current(self, slot: str, generation: int) -> bool:
        return self._generations.get(slot) == generation

    async def fetch_view(self, key: CacheKey) -> dict[str, Any]:
        """Fetch geometry and statistics for ``key`` concurrently and join them."""
        boundaries, metrics = await asyncio.gather(
            self.client.get_boundaries(key.level, key.parent_id),
            self.client.get_metric_data(
                self.domain, key.level, key.parent_id, self.entity_id, **self.filters
            ),
        )
        stats = index_by_unit(metrics.get("data") or [])
        joined = join_boundaries(
            boundaries.get("features") or [],
            stats,
            parent_filter=key.parent_id,
            count_field=metrics.get("countField"),
        )
        joined["metadata"].update(
            {"domain": key.domain, "level": key.level, "parentId": key.parent_id}
        )
        return joined

    async def load_view(self, level: int, parent_id: Optional[int] = None) -> Optional[dict[str, Any]]:
        """
        Show a view, from cache when possible.

        Returns:
            The joined FeatureCollection, or None if a newer load superseded this one
        """
        key = self.key_for(level, parent_id)
        slot = self.domain
        generation = self._next_generation(slot)

        entry = self.cache.get(key)
        if entry is not None:
            self._show(key, entry.data)
            return entry.data

        epoch = self._epoch
        self.loading = True
        try:
            data = await self.fetch_view(key)
        except Exception as e:
            if not self._is_current(slot, generation) or epoch != self._epoch:
                logger.debug("Discarding failed stale load for {}: {}", key, e)
                return None
            self.loading = False
            raise

        if epoch != self._epoch:
            logger.debug("Discarding {} loaded for the previous basemap", key)
            if self._is_current(slot, generation):
                self.loading = False
            return None

        self.cache.put(key, data)
        if not self._is_current(slot, generation):
            logger.debug("Discarding stale response for {}", key)
            return None

        self._show(key, data)
        return data

    def _show(self, key: CacheKey, data: dict[str, Any]) -> None:
        self.view = data
        self.view_key = key
        self.loading = False
        if key.level == ROOT_LEVEL and key.parent_id is None:
            self._prefetch_children(key, data)

    def _prefetch_children(self, key: CacheKey, data: dict[str, Any]) -> None:
        if not self.settings.cache.prefetch_enabled:
            return
        unit_ids = [
            feature["properties"]["unitId"]
            for feature in data.get("features") or []
            if (feature.get("properties") or {}).get("unitId") is not None
        ]
        # Revisiting the root reuses views already cached or being prefetched
        if self.prefetcher.schedule(child_keys(key, dict.fromkeys(unit_ids))) is not None:
            logger.debug("Scheduled prefetch of child views under {}", key)

    async def show_current(self) -> Optional[dict[str, Any]]:
        frame = self.navigator.current
        return await self.load_view(frame.level, frame.region_id)

    async def drill_into(self, feature: dict[str, Any]) -> bool:
        """Drill into a clicked feature. Returns False when the click does not navigate."""
        props = feature.get("properties") or {}
        moved = self.navigator.drill_into(
            props["unitId"],
            props.get("name") or props.get("unitName") or str(props["unitId"]),
            props["level"],
            has_data=not props.get("noData", False),
        )
        if moved:
            await self.show_current()
        return moved

    async def navigate_to_breadcrumb(self, index: int) -> Optional[dict[str, Any]]:
        self.navigator.navigate_to_breadcrumb(index)
        return await self.show_current()

    async def back(self) -> Optional[dict[str, Any]]:
        self.navigator.back()
        return await self.show_current()

    async def handle_map_click(
        self, lng: float, lat: float, feature: Optional[dict[str, Any]] = None
    ) -> Optional[dict[str, Any]]:
        """
        Navigate from a map click.

        A click on a rendered feature drills into it. A click that misses every
        rendered feature is located against the cached national district
        geometry and jumps straight to the containing district.

        Returns:
            The feature navigated to, or None
        """
        if feature is not None:
            return feature if await self.drill_into(feature) else None

        hit = self.locator.locate_in_cache(self.key_for(ROOT_LEVEL, None), lng, lat)
        if hit is None:
            logger.debug("No cached unit contains ({}, {})", lng, lat)
            return None

        props = hit["properties"]
        if self.navigator.navigate_to_unit(props["unitId"], props.get("name", ""), props["level"]):
            await self.show_current()
            return hit
        return None

    def switch_basemap(self) -> None:
        """Drop cached views and in-flight loads; payloads are tied to the old base layer."""
        self._epoch += 1
        self.prefetcher.cancel()
        self.cache.invalidate_all()

    async def aclose(self) -> None:
        self.prefetcher.cancel()
        await self.prefetcher.drain()
