from datetime import datetime, timedelta, timezone

import pytest

from analytics import aggregate, parse_timestamp, peak_hour, period_cutoff
from emissions import calculate_co2_savings

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


def entry(ts, transport_type="biking", distance=5.0, duration=None, id="c"):
    e = {
        "id": id,
        "date": ts.isoformat() if isinstance(ts, datetime) else ts,
        "transportType": transport_type,
        "distance": distance,
        "co2Saved": calculate_co2_savings(transport_type, distance),
    }
    if duration is not None:
        e["duration"] = duration
    return e


@pytest.fixture
def entries():
    return [
        entry(NOW - timedelta(hours=1), "biking", 5.0, duration=20, id="a"),        # 10-19 17:00
        entry(NOW - timedelta(hours=9), "public_transit", 12.0, duration=40, id="b"),  # 10-19 09:00
        entry(NOW - timedelta(days=1, hours=9), "walking", 2.0, id="c"),       # 10-18 09:00
        entry(NOW - timedelta(days=3, hours=4), "biking", 7.5, id="d"),        # 10-16 14:00
        entry(NOW - timedelta(days=12), "carpool", 20.0, id="e"),              # 10-07 18:00
        entry(NOW - timedelta(days=45), "electric_vehicle", 30.0, id="f"),
    ]


def test_week_totals_and_groups(entries):
    stats = aggregate(entries, "week", now=NOW, tz=timezone.utc)

    assert stats["totalTrips"] == 4
    assert stats["totalDistance"] == pytest.approx(26.5)
    expected_co2 = sum(e["co2Saved"] for e in entries[:4])
    assert stats["totalCO2"] == pytest.approx(expected_co2)
    assert [d["date"] for d in stats["daily"]] == ["2026-10-16", "2026-10-18", "2026-10-19"]
    assert [len(d["entries"]) for d in stats["daily"]] == [1, 1, 2]
    assert stats["averagePerDay"] == pytest.approx(expected_co2 / 3)
    assert stats["averageDuration"] == pytest.approx(30.0)


def test_month_includes_older_entries(entries):
    stats = aggregate(entries, "month", now=NOW, tz=timezone.utc)
    assert stats["totalTrips"] == 5
    assert stats["daily"][0]["date"] == "2026-10-07"


def test_daily_co2_partitions_period_total(entries):
    for period in ("week", "month"):
        stats = aggregate(entries, period, now=NOW, tz=timezone.utc)
        assert sum(d["co2"] for d in stats["daily"]) == pytest.approx(stats["totalCO2"])
        assert sum(t["count"] for t in stats["transport"]) == stats["totalTrips"]


def test_hourly_distribution_and_peak(entries):
    stats = aggregate(entries, "week", now=NOW, tz=timezone.utc)
    assert stats["hourly"] == [
        {"hour": 9, "count": 2},
        {"hour": 14, "count": 1},
        {"hour": 17, "count": 1},
    ]
    assert len(stats["hourlyCounts"]) == 24
    assert stats["hourlyCounts"][9] == 2
    assert stats["peakHour"] == {"hour": 9, "count": 2}


def test_local_time_zone_shifts_day_and_hour_buckets():
    late = entry(datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc))
    tz = timezone(timedelta(hours=2))
    stats = aggregate([late], "week", now=NOW, tz=tz)
    assert stats["daily"][0]["date"] == "2026-10-19"
    assert stats["hourly"] == [{"hour": 1, "count": 1}]


def test_transport_breakdown_in_enumeration_order(entries):
    stats = aggregate(entries, "week", now=NOW, tz=timezone.utc)
    assert [t["type"] for t in stats["transport"]] == ["walking", "biking", "public_transit"]
    biking = stats["transport"][1]
    assert biking["count"] == 2
    assert biking["distance"] == pytest.approx(12.5)
    assert biking["co2"] == pytest.approx(2.5)


def test_peak_hour_tie_goes_to_earliest_hour():
    assert peak_hour({14: 3, 9: 3}) == {"hour": 9, "count": 3}
    assert peak_hour({}) is None


@pytest.mark.parametrize("period", ["week", "month"])
def test_empty_input(period):
    stats = aggregate([], period, now=NOW)
    assert stats["totalCO2"] == 0
    assert stats["totalDistance"] == 0
    assert stats["totalTrips"] == 0
    assert stats["averagePerDay"] == 0
    assert stats["averageDuration"] == 0
    assert stats["daily"] == []
    assert stats["hourly"] == []
    assert stats["hourlyCounts"] == [0] * 24
    assert stats["peakHour"] is None
    assert stats["transport"] == []


def test_cutoff_boundary_is_inclusive():
    cutoff = NOW - timedelta(days=7)
    at_cutoff = entry(cutoff, id="edge")
    just_before = entry(cutoff - timedelta(milliseconds=1), id="old")
    stats = aggregate([at_cutoff, just_before], "week", now=NOW, tz=timezone.utc)
    assert stats["totalTrips"] == 1
    assert stats["daily"][0]["entries"][0]["id"] == "edge"


def test_z_suffix_and_naive_timestamps_are_utc():
    assert parse_timestamp("2026-10-19T08:00:00Z") == datetime(2026, 10, 19, 8, tzinfo=timezone.utc)
    assert parse_timestamp(datetime(2026, 10, 19, 8)) == datetime(2026, 10, 19, 8, tzinfo=timezone.utc)


def test_unknown_period_rejected():
    with pytest.raises(ValueError):
        period_cutoff("year", NOW)
