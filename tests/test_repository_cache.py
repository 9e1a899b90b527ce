# tests/test_repository_cache.py
import pytest

from backend.lib.water_balance_core.cache import MetricsCache
from backend.lib.water_balance_core.calculator import compute_metrics
from backend.lib.water_balance_core.models import HierarchyLevel, MeterRecord
from backend.lib.water_balance_core.repository import MeterRepository


def make_records(l1_value=1000):
    return [
        MeterRecord(HierarchyLevel.L1, "C43659", zone="Main Bulk", readings={"Mar-25": l1_value}),
        MeterRecord(HierarchyLevel.L2, "2001", zone="Z1", readings={"Mar-25": 700}),
        MeterRecord(HierarchyLevel.L2, "2002", zone="Z2", readings={"Mar-25": 100}),
        MeterRecord(HierarchyLevel.L3, "3001", zone="Z1", usage_type="Residential",
                    readings={"Mar-25": 600}),
        MeterRecord(HierarchyLevel.DC, "4300334", zone="Main Bulk", usage_type="Retail",
                    readings={"Mar-25": 50}),
    ]


def test_repository_lookups():
    repo = MeterRepository(make_records())
    assert len(repo) == 5
    assert len(list(repo)) == 5
    assert [r.account_id for r in repo.find_by_level(HierarchyLevel.L2)] == ["2001", "2002"]
    assert [r.account_id for r in repo.find_by_level("DC")] == ["4300334"]
    assert [r.account_id for r in repo.find_by_zone("Z1")] == ["2001", "3001"]
    assert [r.account_id for r in repo.find_by_zone("Z1", HierarchyLevel.L3)] == ["3001"]
    assert repo.find_by_account("2002").zone == "Z2"
    assert repo.find_by_account("nope") is None
    assert repo.zones() == ["Main Bulk", "Z1", "Z2"]


def test_repository_is_a_snapshot():
    records = make_records()
    repo = MeterRepository(records)
    records.clear()
    assert len(repo.get_all()) == 5
    assert repo.find_by_level(HierarchyLevel.L1)[0].account_id == "C43659"


def test_empty_repository():
    repo = MeterRepository([])
    assert repo.get_all() == ()
    assert repo.find_by_level(HierarchyLevel.L1) == []
    assert repo.zones() == []


def test_none_rejected():
    with pytest.raises(TypeError):
        MeterRepository(None)


def test_fingerprint_follows_content():
    assert MeterRepository(make_records()).fingerprint() == MeterRepository(make_records()).fingerprint()
    assert MeterRepository(make_records()).fingerprint() != MeterRepository(make_records(999)).fingerprint()


def test_cache_hits_for_same_repository_and_period():
    cache = MetricsCache()
    repo = MeterRepository(make_records())
    first = cache.get_metrics(repo, "Mar", "2025")
    second = cache.get_metrics(repo, "Mar", "25")
    assert first is second
    assert (cache.hits, cache.misses) == (1, 1)
    assert first == compute_metrics(make_records(), "Mar", "2025")


def test_cache_never_serves_stale_results_after_data_change():
    cache = MetricsCache()
    old = cache.get_metrics(MeterRepository(make_records()), "Mar", "2025")
    new = cache.get_metrics(MeterRepository(make_records(2000)), "Mar", "2025")
    assert old.total_l1_supply == 1000
    assert new.total_l1_supply == 2000


def test_cache_keys_include_exclusions():
    cache = MetricsCache()
    repo = MeterRepository(make_records())
    default = cache.get_metrics(repo, "Mar", "2025")
    excluded = cache.get_metrics(repo, "Mar", "2025", excluded_accounts={"3001"})
    assert default.total_l3_volume == 650
    assert excluded.total_l3_volume == 50


def test_cache_is_bounded():
    cache = MetricsCache(max_entries=2)
    repo = MeterRepository(make_records())
    for month in ("Jan", "Feb", "Mar"):
        cache.get_metrics(repo, month, "2025")
    assert len(cache) == 2
    cache.get_metrics(repo, "Jan", "2025")
    assert cache.misses == 4
    cache.clear()
    assert len(cache) == 0


def test_cached_metrics_are_read_only():
    cache = MetricsCache()
    repo = MeterRepository(make_records())
    first = cache.get_metrics(repo, "Mar", "2025")
    with pytest.raises(TypeError):
        first.consumption_by_type["Residential"] = -1
    with pytest.raises((TypeError, AttributeError)):
        first.zone_metrics.clear()

    again = cache.get_metrics(repo, "Mar", "2025")
    assert again.consumption_by_type == {"Residential": 600, "Retail": 50}
    assert set(again.zone_metrics) == {"Z1", "Z2", "Main Bulk"}
    data = again.to_dict()
    assert type(data["consumptionByType"]) is dict
    assert type(data["zoneMetrics"]) is dict


def test_records_detached_from_source_readings():
    readings = {"Mar-25": 600}
    records = make_records()[:3] + [
        MeterRecord(HierarchyLevel.L3, "3001", zone="Z1", usage_type="Residential", readings=readings)
    ]
    cache = MetricsCache()
    repo = MeterRepository(records)
    fingerprint = repo.fingerprint()
    assert cache.get_metrics(repo, "Mar", "2025").total_l3_volume == 600

    readings["Mar-25"] = 100
    assert repo.fingerprint() == fingerprint
    assert cache.get_metrics(repo, "Mar", "2025").total_l3_volume == 600
    assert compute_metrics(records, "Mar", "2025").total_l3_volume == 600
    with pytest.raises(TypeError):
        records[-1].readings["Mar-25"] = 1
