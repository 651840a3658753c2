# analytics.py
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Literal, Mapping, Optional, TypeAlias, TypedDict

from emissions import TRANSPORT_TYPES, TransportType

Period: TypeAlias = Literal["week", "month"]

PERIOD_DAYS: Dict[str, int] = {
    "week": 7,
    "month": 30,
}


class _CommuteEntryBase(TypedDict):
    id: str
    date: str
    transportType: TransportType
    distance: float
    co2Saved: float


class CommuteEntry(_CommuteEntryBase, total=False):
    duration: float


class DailyStats(TypedDict):
    date: str
    entries: List[CommuteEntry]
    co2: float
    distance: float


class HourCount(TypedDict):
    hour: int
    count: int


class TransportStats(TypedDict):
    type: TransportType
    count: int
    co2: float
    distance: float


class AggregatedPeriodStats(TypedDict):
    period: Period
    since: str
    totalCO2: float
    totalDistance: float
    totalTrips: int
    averagePerDay: float
    averageDuration: float
    daily: List[DailyStats]
    hourly: List[HourCount]
    hourlyCounts: List[int]
    peakHour: Optional[HourCount]
    transport: List[TransportStats]


def parse_timestamp(value: str | datetime) -> datetime:
    """Timezone-aware datetime from an ISO-8601 string or datetime; naive values are UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def local_time(value: str | datetime, tz: Optional[tzinfo] = None) -> datetime:
    # astimezone(None) converts to the host's local zone
    return parse_timestamp(value).astimezone(tz)


def period_cutoff(period: str, now: Optional[datetime] = None) -> datetime:
    if period not in PERIOD_DAYS:
        raise ValueError(f"unknown period: {period!r}")
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    return now - timedelta(days=PERIOD_DAYS[period])


def daily_stats(entries: Iterable[CommuteEntry], tz: Optional[tzinfo] = None) -> List[DailyStats]:
    groups: Dict[str, DailyStats] = {}
    for entry in entries:
        key = local_time(entry["date"], tz).date().isoformat()
        group = groups.setdefault(key, {"date": key, "entries": [], "co2": 0.0, "distance": 0.0})
        group["entries"].append(entry)
        group["co2"] += entry["co2Saved"]
        group["distance"] += entry["distance"]
    # ISO dates sort chronologically
    return [groups[k] for k in sorted(groups)]


def hourly_counts(entries: Iterable[CommuteEntry], tz: Optional[tzinfo] = None) -> Dict[int, int]:
    return dict(Counter(local_time(e["date"], tz).hour for e in entries))


def peak_hour(counts: Mapping[int, int]) -> Optional[HourCount]:
    """Hour with the most trips; ties go to the earliest hour."""
    best: Optional[HourCount] = None
    for hour in sorted(counts):
        if best is None or counts[hour] > best["count"]:
            best = {"hour": hour, "count": counts[hour]}
    return best


def transport_breakdown(entries: Iterable[CommuteEntry]) -> List[TransportStats]:
    stats: Dict[str, TransportStats] = {}
    for entry in entries:
        mode = entry["transportType"]
        s = stats.setdefault(mode, {"type": mode, "count": 0, "co2": 0.0, "distance": 0.0})
        s["count"] += 1
        s["co2"] += entry["co2Saved"]
        s["distance"] += entry["distance"]
    ordered = [stats[m] for m in TRANSPORT_TYPES if m in stats]
    # modes outside the enumeration (legacy documents) trail in first-seen order
    ordered += [s for m, s in stats.items() if m not in TRANSPORT_TYPES]
    return ordered


def aggregate(
    entries: Iterable[CommuteEntry],
    period: str,
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> AggregatedPeriodStats:
    """
    Summarise the commutes logged within the last week or month.

    Day and hour buckets use `tz` (host local time when omitted). The result
    is a plain JSON-ready dict recomputed from its inputs on every call.
    """
    cutoff = period_cutoff(period, now)
    # an entry dated exactly at the cutoff is kept
    in_period = [e for e in entries if parse_timestamp(e["date"]) >= cutoff]

    days = daily_stats(in_period, tz)
    counts = hourly_counts(in_period, tz)

    total_co2 = sum(e["co2Saved"] for e in in_period)
    total_distance = sum(e["distance"] for e in in_period)
    durations = [e["duration"] for e in in_period if e.get("duration") is not None]

    return {
        "period": period,  # type: ignore[typeddict-item]
        "since": cutoff.isoformat(),
        "totalCO2": total_co2,
        "totalDistance": total_distance,
        "totalTrips": len(in_period),
        "averagePerDay": total_co2 / len(days) if days else 0.0,
        "averageDuration": sum(durations) / len(durations) if durations else 0.0,
        "daily": days,
        "hourly": [{"hour": h, "count": counts[h]} for h in sorted(counts)],
        "hourlyCounts": [counts.get(h, 0) for h in range(24)],
        "peakHour": peak_hour(counts),
        "transport": transport_breakdown(in_period),
    }
