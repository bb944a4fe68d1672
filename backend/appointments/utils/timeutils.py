"""
Time helpers shared by the engine
"""
from datetime import date, datetime, time, timedelta

import pytz


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def local_instant(tz, day: date, offset_seconds: int) -> datetime:
    """Wall-clock offset on a local calendar day as an aware datetime"""
    naive = datetime.combine(day, time.min) + timedelta(seconds=offset_seconds)
    return tz.normalize(tz.localize(naive))


def local_midnight(tz, day: date) -> datetime:
    return tz.localize(datetime.combine(day, time.min))

