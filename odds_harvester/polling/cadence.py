"""Pure collection-cadence policy: what a race job does on a given firing."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from odds_harvester.clock import local_to_utc
from odds_harvester.scraper.schemas import RaceInfo

NEAR_POST = timedelta(minutes=30)
MID_RANGE = timedelta(hours=3)
FAR_RANGE = timedelta(hours=12)


class TickAction(str, Enum):
    WAIT = "wait"  # grade race before its collection gate
    SKIP = "skip"  # inside the window, but not this minute
    COLLECT = "collect"
    RETIRE = "retire"  # final-odds window has closed


def collection_start(start_time: datetime, tz: ZoneInfo, hour: int = 9, days_before: int = 1) -> datetime:
    """Gate for grade races: ``hour``:00 local, ``days_before`` days before the race."""
    race_day = start_time.astimezone(tz).date()
    return local_to_utc(race_day - timedelta(days=days_before), hour, 0, tz)


def should_collect(time_to_post: timedelta, is_grade: bool, minute: int) -> bool:
    """Grade races are polled more often, and every firing from 30 minutes out."""
    if time_to_post <= timedelta(0):
        return True
    if is_grade:
        if time_to_post <= NEAR_POST:
            return True
        if time_to_post <= MID_RANGE:
            return minute % 10 == 0
        if time_to_post <= FAR_RANGE:
            return minute % 30 == 0
        return minute == 0
    if time_to_post <= NEAR_POST:
        return minute % 10 == 0
    return minute % 30 == 0


def in_overnight_window(
    start_time: datetime,
    now: datetime,
    tz: ZoneInfo,
    start_hour: int = 18,
    end_hour: int = 9,
) -> bool:
    """From ``start_hour`` local the evening before the race until ``end_hour`` on race day."""
    race_day = start_time.astimezone(tz).date()
    window_start = local_to_utc(race_day - timedelta(days=1), start_hour, 0, tz)
    window_end = local_to_utc(race_day, end_hour, 0, tz)
    return window_start <= now < window_end


def decide_tick(
    race: RaceInfo,
    now: datetime,
    *,
    tz: ZoneInfo,
    final_window: timedelta = timedelta(minutes=5),
    start_hour: int = 9,
    overnight_suppression: bool = False,
    overnight_start_hour: int = 18,
    overnight_end_hour: int = 9,
) -> TickAction:
    if race.is_grade and now < collection_start(race.start_time, tz, start_hour):
        return TickAction.WAIT

    time_to_post = race.start_time - now
    if time_to_post <= -final_window:
        return TickAction.RETIRE

    if overnight_suppression and in_overnight_window(
        race.start_time, now, tz, overnight_start_hour, overnight_end_hour
    ):
        return TickAction.SKIP

    minute = now.astimezone(tz).minute
    if should_collect(time_to_post, race.is_grade, minute):
        return TickAction.COLLECT
    return TickAction.SKIP


def is_race_day(now: datetime, tz: ZoneInfo, race_days: list[int]) -> bool:
    """``race_days`` uses ``date.weekday()`` numbering (Monday is 0)."""
    return now.astimezone(tz).weekday() in race_days
