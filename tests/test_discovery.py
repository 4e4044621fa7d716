"""
Unit tests for TouchWandUnitDiscoveryService.

The REST client is replaced by an AsyncMock; results land in an in-memory
catalog.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from twbridge.discovery import TouchWandUnitDiscoveryService, is_secondary_unit
from conftest import make_unit

BRIDGE = "bridge-1"


def fake_client(*responses):
    client = MagicMock()
    client.list_units = AsyncMock(side_effect=list(responses))
    return client


def units_json(*units):
    return json.dumps(list(units))


def make_service(client, catalog, add_secondary=False, **kwargs):
    return TouchWandUnitDiscoveryService(BRIDGE, client, catalog, lambda: add_secondary, **kwargs)


class TestStartScan:

    @pytest.mark.asyncio
    async def test_supported_units_are_reported(self, catalog):
        client = fake_client(units_json(
            make_unit(id="1", name="Lamp", type="Switch"),
            make_unit(id="2", name="Blind", type="shutter"),
            make_unit(id="3", name="Thermostat", type="Thermostat"),
        ))
        service = make_service(client, catalog)

        results = await service.start_scan()

        assert [(r["unit_id"], r["thing_type"]) for r in results] == [("1", "switch"), ("2", "shutter")]
        stored = catalog.results(BRIDGE)
        assert {r["thing_uid"] for r in stored} == {
            "touchwand:switch:bridge-1:1",
            "touchwand:shutter:bridge-1:2",
        }
        assert stored[0]["properties"] == {"id": stored[0]["unit_id"], "name": stored[0]["label"]}

    @pytest.mark.asyncio
    async def test_secondary_unit_excluded_by_default(self, catalog):
        client = fake_client(units_json(make_unit(id="9", idData={"ctrl": 2})))
        service = make_service(client, catalog, add_secondary=False)

        assert await service.start_scan() == []

    @pytest.mark.asyncio
    async def test_secondary_unit_included_when_enabled(self, catalog):
        client = fake_client(units_json(make_unit(id="9", idData={"ctrl": 2})))
        service = make_service(client, catalog, add_secondary=True)

        results = await service.start_scan()

        assert [r["unit_id"] for r in results] == ["9"]

    @pytest.mark.asyncio
    async def test_empty_id_data_is_primary(self, catalog):
        client = fake_client(units_json(make_unit(id="1", idData={}), make_unit(id="2", idData=None)))
        service = make_service(client, catalog)

        assert len(await service.start_scan()) == 2

    @pytest.mark.asyncio
    async def test_unreachable_hub_yields_no_results(self, catalog):
        service = make_service(fake_client(None), catalog)

        assert await service.start_scan() == []
        assert not service.last_scan_completed

    @pytest.mark.asyncio
    async def test_malformed_response_yields_no_results(self, catalog):
        service = make_service(fake_client("<html>oops</html>"), catalog)

        assert await service.start_scan() == []

    @pytest.mark.asyncio
    async def test_malformed_entry_is_skipped(self, catalog):
        client = fake_client(json.dumps([{"name": "no id"}, "junk", make_unit(id="4")]))
        service = make_service(client, catalog)

        results = await service.start_scan()

        assert [r["unit_id"] for r in results] == ["4"]

    def test_is_secondary_unit(self):
        assert is_secondary_unit({"ctrl": 1})
        assert not is_secondary_unit({})
        assert not is_secondary_unit(None)


class TestEviction:

    @pytest.mark.asyncio
    async def test_removed_unit_is_forgotten_after_next_scan(self, catalog):
        client = fake_client(
            units_json(make_unit(id="1"), make_unit(id="2")),
            units_json(make_unit(id="1")),
        )
        service = make_service(client, catalog)

        await service.scan()
        assert {r["unit_id"] for r in catalog.results(BRIDGE)} == {"1", "2"}

        await service.scan()
        assert {r["unit_id"] for r in catalog.results(BRIDGE)} == {"1"}

    @pytest.mark.asyncio
    async def test_failed_scan_keeps_previous_results(self, catalog):
        client = fake_client(units_json(make_unit(id="1")), None, None)
        service = make_service(client, catalog)

        await service.scan()
        await service.scan()
        await service.scan()

        assert [r["unit_id"] for r in catalog.results(BRIDGE)] == ["1"]

    @pytest.mark.asyncio
    async def test_tracked_unit_leaves_inbox_on_next_scan(self, catalog):
        tracked = set()
        client = fake_client(units_json(make_unit(id="7"), make_unit(id="8")),
                             units_json(make_unit(id="7"), make_unit(id="8")))
        service = TouchWandUnitDiscoveryService(BRIDGE, client, catalog, lambda: False, tracked.__contains__)

        await service.scan()
        tracked.add("7")
        results = await service.scan()

        assert [r["unit_id"] for r in results] == ["8"]
        assert [r["unit_id"] for r in catalog.results(BRIDGE)] == ["8"]

    def test_activate_purges_only_own_bridge(self, catalog):
        catalog.thing_discovered(BRIDGE, "switch", "1", "Lamp")
        catalog.thing_discovered("other", "switch", "1", "Lamp")
        service = make_service(MagicMock(), catalog)

        service.activate()

        assert catalog.results(BRIDGE) == []
        assert len(catalog.results("other")) == 1

    def test_deactivate_purges_own_results(self, catalog):
        catalog.thing_discovered(BRIDGE, "shutter", "2", "Blind")
        service = make_service(MagicMock(), catalog)

        service.deactivate()

        assert catalog.results(BRIDGE) == []


class TestBackgroundDiscovery:

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, catalog):
        client = MagicMock()
        client.list_units = AsyncMock(return_value=None)
        service = make_service(client, catalog, initial_delay=60)

        service.start_background_discovery()
        job = service._scanning_job
        service.start_background_discovery()

        assert service._scanning_job is job
        assert service.background_running
        service.stop_background_discovery()

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_stop_schedule(self, catalog):
        client = MagicMock()
        client.list_units = AsyncMock(side_effect=[None, RuntimeError("boom"), units_json(make_unit(id="1"))]
                                      + [None] * 100)
        service = make_service(client, catalog, initial_delay=0, scan_interval=0.01)

        service.start_background_discovery()
        await asyncio.sleep(0.1)
        service.stop_background_discovery()

        assert client.list_units.await_count >= 3
        assert [r["unit_id"] for r in catalog.results(BRIDGE)] == ["1"]

    @pytest.mark.asyncio
    async def test_stop_prevents_further_scans(self, catalog):
        client = MagicMock()
        client.list_units = AsyncMock(return_value=None)
        service = make_service(client, catalog, initial_delay=0, scan_interval=0.01)

        service.start_background_discovery()
        await asyncio.sleep(0.05)
        service.stop_background_discovery()
        service.stop_background_discovery()
        await asyncio.sleep(0)
        count = client.list_units.await_count
        await asyncio.sleep(0.05)

        assert client.list_units.await_count == count
        assert not service.background_running
