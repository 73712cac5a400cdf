"""
Billing period arithmetic for the single fixed plan.

A paid period runs 30 days from the moment the payment is recorded, stays
active for one more grace day, and the next cycle's charge is scheduled
for 10:00–10:59 on the day after the period ends.
"""
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional
from zoneinfo import ZoneInfo

PERIOD_LENGTH = timedelta(days=30)
GRACE_LENGTH = timedelta(days=1)
SCHEDULE_DAY_OFFSET = timedelta(days=1)
SCHEDULE_HOUR = 10
SCHEDULE_SEARCH_MARGIN = timedelta(days=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values (SQLite) are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """ISO 8601 in UTC with millisecond precision and a Z suffix."""
    if dt is None:
        return None
    dt = as_utc(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class BillingPeriod(NamedTuple):
    start_at: datetime
    end_at: datetime
    end_grace_at: datetime
    next_schedule_at: datetime


class PeriodCalculator:
    """
    Computes period boundaries from an injected clock and random source so
    that tests can pin both.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        schedule_tz: str = "UTC",
    ):
        self.clock = clock
        self.rng = rng or random.Random()
        self.schedule_tz = ZoneInfo(schedule_tz)

    def compute_period(self, now: Optional[datetime] = None) -> BillingPeriod:
        start_at = as_utc(now or self.clock())
        end_at = start_at + PERIOD_LENGTH
        end_grace_at = end_at + GRACE_LENGTH

        schedule_day = (end_at + SCHEDULE_DAY_OFFSET).astimezone(self.schedule_tz)
        next_schedule_at = schedule_day.replace(
            hour=SCHEDULE_HOUR,
            minute=self.rng.randrange(60),
            second=0,
            microsecond=0,
        ).astimezone(timezone.utc)

        return BillingPeriod(start_at, end_at, end_grace_at, next_schedule_at)

    @staticmethod
    def schedule_search_window(next_schedule_at: datetime) -> tuple[datetime, datetime]:
        """Bounds for the gateway schedule lookup around a planned charge."""
        center = as_utc(next_schedule_at)
        return center - SCHEDULE_SEARCH_MARGIN, center + SCHEDULE_SEARCH_MARGIN
