# progress.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Set, TypedDict

from analytics import local_time


class Achievement(TypedDict):
    id: str
    title: str
    description: str
    progress: float
    target: float
    completed: bool


# id -> (title, description, metric, target)
ACHIEVEMENTS = {
    "green_warrior": ("Green Warrior", "Logged 5 eco-friendly commutes", "commutes", 5),
    "streak_master": ("Streak Master", "Maintain 7-day green streak", "streak", 7),
    "carbon_saver": ("Carbon Saver", "Save 10kg of CO₂", "co2", 10.0),
}


def green_days(dates: Iterable[str | datetime], tz: Optional[tzinfo] = None) -> Set[date]:
    return {local_time(d, tz).date() for d in dates}


def compute_streak(
    dates: Iterable[str | datetime],
    *,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
) -> int:
    """
    Consecutive green days ending today.

    Several commutes on the same day count once. When today has no commute
    yet, counting starts from yesterday instead, so a streak is not reported
    as broken before the day is over. Any other gap ends the streak.
    """
    days = green_days(dates, tz)
    if today is None:
        today = datetime.now(timezone.utc).astimezone(tz).date()

    day = today
    if day not in days:
        day -= timedelta(days=1)

    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def achievement_progress(commutes: int, streak: int, co2_saved: float) -> List[Achievement]:
    metrics = {"commutes": commutes, "streak": streak, "co2": co2_saved}
    out: List[Achievement] = []
    for badge_id, (title, description, metric, target) in ACHIEVEMENTS.items():
        value = metrics[metric]
        out.append({
            "id": badge_id,
            "title": title,
            "description": description,
            "progress": min(value, target),
            "target": target,
            "completed": value >= target,
        })
    return out


def earned_badges(commutes: int, streak: int, co2_saved: float) -> List[str]:
    return [a["id"] for a in achievement_progress(commutes, streak, co2_saved) if a["completed"]]
