"""Tests for MapSession view loading and navigation."""

import asyncio

import pytest

from electoral_atlas.cache import CacheKey
from electoral_atlas.session import MapSession

from conftest import boundary, square

FEATURES = {
    2: [
        boundary(10, "Alpha", 2, 1, square(30.0, 0.0)),
        boundary(11, "Bravo", 2, 1, square(31.0, 0.0)),
        boundary(12, "Charlie", 2, 1, square(32.0, 0.0)),
    ],
    3: [
        boundary(100, "Alpha North", 3, 10, square(30.0, 0.5, 0.5)),
        boundary(101, "Alpha South", 3, 10, square(30.0, 0.0, 0.5)),
        boundary(110, "Bravo East", 3, 11, square(31.0, 0.0)),
    ],
}

VOTES = {10: 500, 11: 80, 100: 300, 101: 200, 110: 80}


class FakeClient:
    """Stands in for AtlasApiClient, serving FEATURES and VOTES."""

    def __init__(self):
        self.calls = []
        self.gates: dict = {}
        self.failing: set = set()

    async def get_boundaries(self, level, parent_id=None):
        self.calls.append(("boundaries", level, parent_id))
        gate = self.gates.get((level, parent_id))
        if gate is not None:
            await gate.wait()
        if (level, parent_id) in self.failing:
            raise RuntimeError("boundary service down")
        features = [
            f
            for f in FEATURES.get(level, [])
            if parent_id is None or f["properties"]["parentId"] == parent_id
        ]
        return {"type": "FeatureCollection", "features": features}

    async def get_metric_data(self, domain, level, parent_id=None, entity_id=None, **filters):
        self.calls.append(("metrics", level, parent_id))
        rows = [
            {
                "unitId": f["properties"]["unitId"],
                "totalVotes": VOTES.get(f["properties"]["unitId"], 0),
                "noData": f["properties"]["unitId"] not in VOTES,
            }
            for f in FEATURES.get(level, [])
        ]
        return {"countField": "totalVotes", "count": len(rows), "data": rows}


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def map_session(client, test_settings):
    test_settings.cache.prefetch_enabled = False
    return MapSession(client, test_settings, domain="results", entity_id=7)


class TestMapSessionLoading:
    """Tests for loading and caching views."""

    def test_national_view_joins_geometry_and_statistics(self, map_session, client):
        view = asyncio.run(map_session.load_view(2))

        assert [f["id"] for f in view["features"]] == [10, 11, 12]
        assert view["features"][0]["properties"]["value"] == 500
        assert view["features"][2]["properties"]["noData"] is True
        assert view["metadata"]["domain"] == "results"
        assert map_session.view_key == CacheKey("results", 2, None, "7")
        assert not map_session.loading
        assert {c[0] for c in client.calls} == {"boundaries", "metrics"}

    def test_cached_view_is_not_refetched(self, map_session, client):
        async def scenario():
            await map_session.load_view(2)
            calls = len(client.calls)
            await map_session.load_view(2)
            return calls

        calls = asyncio.run(scenario())
        assert len(client.calls) == calls

    def test_child_view_is_filtered_to_parent(self, map_session):
        view = asyncio.run(map_session.load_view(3, 10))
        assert [f["id"] for f in view["features"]] == [100, 101]

    def test_variant_includes_filters(self, client, test_settings):
        session = MapSession(
            client, test_settings, domain="issues", entity_id=3, filters={"min_severity": 2}
        )
        assert session.variant == "3|min_severity=2"
        assert MapSession(client, test_settings, domain="demographics").variant is None

    def test_stale_response_is_discarded(self, map_session, client):
        async def scenario():
            gate = asyncio.Event()
            client.gates[(3, 10)] = gate
            slow = asyncio.create_task(map_session.load_view(3, 10))
            await asyncio.sleep(0)
            fast = await map_session.load_view(3, 11)
            gate.set()
            return await slow, fast

        slow, fast = asyncio.run(scenario())

        assert slow is None
        assert [f["id"] for f in fast["features"]] == [110]
        assert map_session.view_key.parent_id == 11
        # The superseded payload is still cached for later
        assert map_session.cache.has(CacheKey("results", 3, 10, "7"))

    def test_current_failure_is_raised(self, map_session, client):
        client.failing.add((2, None))

        with pytest.raises(RuntimeError):
            asyncio.run(map_session.load_view(2))
        assert not map_session.loading
        assert map_session.view is None

    def test_switch_basemap_clears_cache(self, map_session):
        asyncio.run(map_session.load_view(2))
        map_session.switch_basemap()
        assert len(map_session.cache) == 0


class TestMapSessionPrefetch:
    """Tests for child prefetch after the national view loads."""

    def test_children_of_national_view_are_prefetched(self, client, test_settings):
        session = MapSession(client, test_settings, domain="results", entity_id=7)

        async def scenario():
            await session.load_view(2)
            await session.prefetcher.drain()

        asyncio.run(scenario())

        for district_id in (10, 11, 12):
            assert session.cache.has(CacheKey("results", 3, district_id, "7"))


class TestMapSessionNavigation:
    """Tests for clicks and breadcrumbs."""

    def test_drill_into_feature(self, map_session):
        async def scenario():
            view = await map_session.load_view(2)
            moved = await map_session.drill_into(view["features"][0])
            return moved

        assert asyncio.run(scenario())
        assert map_session.view_key == CacheKey("results", 3, 10, "7")
        assert map_session.navigator.current.region_name == "Alpha"

    def test_no_data_feature_is_not_drillable(self, map_session, client):
        async def scenario():
            view = await map_session.load_view(2)
            calls = len(client.calls)
            moved = await map_session.drill_into(view["features"][2])
            return moved, calls

        moved, calls = asyncio.run(scenario())
        assert not moved
        assert len(client.calls) == calls
        assert map_session.navigator.at_root

    def test_click_outside_rendered_features_jumps_to_district(self, map_session):
        async def scenario():
            await map_session.load_view(2)
            return await map_session.handle_map_click(31.5, 0.5)

        hit = asyncio.run(scenario())

        assert hit["properties"]["name"] == "Bravo"
        assert [f.region_id for f in map_session.navigator.stack] == [None, 11]
        assert map_session.view_key.parent_id == 11

    def test_click_without_cached_geometry(self, map_session):
        assert asyncio.run(map_session.handle_map_click(31.5, 0.5)) is None
        assert map_session.navigator.at_root

    def test_breadcrumb_and_back(self, map_session):
        async def scenario():
            view = await map_session.load_view(2)
            await map_session.drill_into(view["features"][0])
            child = map_session.view
            await map_session.drill_into(child["features"][0])
            await map_session.navigate_to_breadcrumb(1)
            first = map_session.view_key
            await map_session.back()
            return first, map_session.view_key

        first, second = asyncio.run(scenario())
        assert first == CacheKey("results", 3, 10, "7")
        assert second == CacheKey("results", 2, None, "7")


class TestMapSessionLifecycle:
    """Tests for repeated root visits and basemap switches while loads are pending."""

    def test_revisiting_root_reuses_children_in_flight(self, client, test_settings):
        session = MapSession(client, test_settings, domain="results", entity_id=7)

        async def scenario():
            for district_id in (10, 11, 12):
                client.gates[(3, district_id)] = asyncio.Event()
            await session.load_view(2)
            await asyncio.sleep(0)
            await session.navigate_to_breadcrumb(-1)
            await session.load_view(2)
            in_flight = len(session.prefetcher.in_flight)
            for gate in client.gates.values():
                gate.set()
            await session.prefetcher.drain()
            return in_flight

        in_flight = asyncio.run(scenario())

        child_fetches = [c for c in client.calls if c[0] == "boundaries" and c[1] == 3]
        assert in_flight == 3
        assert len(child_fetches) == 3
        assert not session.prefetcher.in_flight

    def test_switch_basemap_drops_pending_load(self, map_session, client):
        async def scenario():
            gate = asyncio.Event()
            client.gates[(3, 10)] = gate
            pending = asyncio.create_task(map_session.load_view(3, 10))
            await asyncio.sleep(0)
            map_session.switch_basemap()
            gate.set()
            return await pending

        assert asyncio.run(scenario()) is None
        assert not map_session.cache.has(CacheKey("results", 3, 10, "7"))
        assert map_session.view is None
        assert not map_session.loading

    def test_loads_after_switch_are_cached(self, map_session):
        async def scenario():
            await map_session.load_view(2)
            map_session.switch_basemap()
            return await map_session.load_view(3, 10)

        view = asyncio.run(scenario())

        assert [f["id"] for f in view["features"]] == [100, 101]
        assert map_session.cache.has(CacheKey("results", 3, 10, "7"))
        assert not map_session.cache.has(CacheKey("results", 2, None, "7"))
