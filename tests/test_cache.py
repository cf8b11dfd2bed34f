import json

import pytest

from hactl.cache import CacheSnapshot, RegistryCache, expand_categories
from hactl.errors import CacheRefreshError, CacheUnavailableError

from .conftest import SERVER


def test_first_read_fetches_and_persists(cache, transport):
    entries = cache.entries("entities")
    assert {e.id for e in entries} >= {"light.kitchen_main", "lock.front_door"}
    assert transport.fetches == ["entities"]
    data = json.loads(cache.path("entities").read_text(encoding="utf-8"))
    assert data["server_url"] == SERVER
    assert data["category"] == "entities"


def test_entity_fields_from_registry(cache):
    by_id = {e.id: e for e in cache.entries("entities")}
    tv = by_id["media_player.living_room_tv"]
    assert tv.aliases == ["Telly"]
    assert tv.area_id == "living_room"
    assert by_id["light.kitchen_lamp"].attributes["device_id"] == "dev_kitchen_lamp"
    assert by_id["switch.porch"].attributes["labels"] == ["outdoor"]


def test_services_expand_per_service(cache):
    ids = {e.id for e in cache.entries("services")}
    assert {"light.turn_on", "lock.unlock", "media_player.volume_mute"} <= ids


def test_fresh_snapshot_is_served_without_fetch(cache, transport, clock):
    cache.get("entities")
    clock.advance(100)
    reloaded = RegistryCache(directory=cache.directory, transport=transport, server_url=SERVER, clock=clock)
    reloaded.get("entities")
    assert transport.fetches == ["entities"]


def test_stale_snapshot_served_then_queued(cache, transport, clock):
    first = cache.get("entities")
    clock.advance(301)
    transport.states[0]["attributes"]["friendly_name"] = "Main Kitchen Light"
    stale = cache.get("entities")
    assert stale is first
    assert "entities" in cache.pending
    assert cache.refresh_pending() == ["entities"]
    assert not cache.pending
    assert cache.get("entities").entries["light.kitchen_main"].name == "Main Kitchen Light"


def test_staleness_boundary(cache, clock):
    cache.get("entities")
    clock.advance(300)
    cache.get("entities")
    assert not cache.pending


def test_block_policy_refreshes_stale(cache, transport, clock):
    cache.get("entities")
    clock.advance(301)
    cache.stale_policy = "block"
    cache.get("entities")
    assert transport.fetches == ["entities", "entities"]
    assert not cache.pending


def test_fresh_read_falls_back_to_stale_on_failure(cache, transport, clock):
    first = cache.get("entities")
    clock.advance(301)
    transport.fail = True
    assert cache.get("entities", fresh=True) is first


def test_missing_snapshot_without_connection(tmp_path, clock):
    offline = RegistryCache(directory=tmp_path / "cache", clock=clock)
    with pytest.raises(CacheUnavailableError) as info:
        offline.get("entities")
    assert info.value.exit_code == 6


def test_missing_snapshot_with_failing_transport(cache, transport):
    transport.fail = True
    with pytest.raises(CacheUnavailableError) as info:
        cache.get("areas")
    assert info.value.reason == "url_error"
    assert not cache.path("areas").exists()


def test_failed_refresh_keeps_previous_snapshot(cache, transport):
    cache.refresh("entities")
    before = cache.path("entities").read_bytes()
    transport.fail = True
    with pytest.raises(CacheRefreshError):
        cache.refresh("entities")
    assert cache.path("entities").read_bytes() == before


def test_refresh_all_aggregates_failures(cache, transport):
    transport.fail = True
    with pytest.raises(CacheRefreshError) as info:
        cache.refresh("all")
    assert "entities: url_error" in info.value.reason
    assert "labels: url_error" in info.value.reason


def test_snapshot_from_another_server_is_ignored(cache, transport, clock):
    cache.refresh("entities")
    other = RegistryCache(
        directory=cache.directory, transport=None, server_url="http://other:8123", clock=clock
    )
    assert other.load("entities") is None


def test_corrupt_snapshot_is_refetched(cache, transport):
    cache.path("entities").parent.mkdir(parents=True, exist_ok=True)
    cache.path("entities").write_text("{not json", encoding="utf-8")
    cache.entries("entities")
    assert transport.fetches == ["entities"]


def test_invalidate(cache):
    cache.refresh("all")
    assert cache.invalidate("areas") == ["areas"]
    assert not cache.path("areas").exists()
    assert cache.invalidate("areas") == []
    assert sorted(cache.invalidate("all")) == ["devices", "entities", "labels", "services"]


def test_status(cache, clock):
    cache.refresh("entities")
    clock.advance(60)
    rows = {row["category"]: row for row in cache.status()}
    assert rows["entities"]["exists"] is True
    assert rows["entities"]["count"] == 10
    assert rows["entities"]["age_secs"] == 60.0
    assert rows["entities"]["expires_in_secs"] == 240.0
    assert rows["entities"]["stale"] is False
    assert rows["labels"]["exists"] is False


def test_snapshot_round_trip():
    snapshot = CacheSnapshot("labels", {}, 10.0, 3600.0, SERVER)
    assert CacheSnapshot.from_dict(snapshot.to_dict()) == snapshot


def test_expand_categories():
    assert expand_categories("all") == ["entities", "services", "areas", "devices", "labels"]
    assert expand_categories("areas") == ["areas"]
    with pytest.raises(ValueError):
        expand_categories("scenes")
