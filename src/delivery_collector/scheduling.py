"""Day windows in each platform's own date encoding.

Grab's insights backend expects ISO-8601 strings pinned to UTC+08:00
whatever the host zone is. GoBiz buckets by the merchant's wall clock, so
GoJek windows are epoch milliseconds of local midnight boundaries.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterator, Optional, Union

from .schemas.accounts import Platform


GRAB_OFFSET = timezone(timedelta(hours=8))
GRAB_DAY_END = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class DayWindow:
    """One calendar day in the representation a platform expects.

    ``start`` and ``end`` are inclusive. Grab windows carry ISO strings,
    GoJek windows carry epoch milliseconds.
    """

    platform: Platform
    stat_date: date
    start: Union[str, int]
    end: Union[str, int]

    @property
    def start_ms(self) -> int:
        return _to_epoch_ms(self.start)

    @property
    def end_ms(self) -> int:
        return _to_epoch_ms(self.end)

    def __str__(self) -> str:
        return f"{self.platform.value}:{self.stat_date.isoformat()}"


def _to_epoch_ms(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    return int(datetime.fromisoformat(value).timestamp() * 1000)


def _local_midnight_ms(day: date, tz: Optional[tzinfo]) -> int:
    moment = datetime.combine(day, time.min)
    if tz is not None:
        moment = moment.replace(tzinfo=tz)
    # Naive datetimes resolve against the host's local zone.
    return int(moment.timestamp() * 1000)


def grab_window(day: date) -> DayWindow:
    start = datetime.combine(day, time.min, tzinfo=GRAB_OFFSET)
    end = datetime.combine(day, GRAB_DAY_END, tzinfo=GRAB_OFFSET)
    return DayWindow(
        platform=Platform.GRAB,
        stat_date=day,
        start=start.isoformat(timespec="milliseconds"),
        end=end.isoformat(timespec="milliseconds"),
    )


def gojek_window(day: date, tz: Optional[tzinfo] = None) -> DayWindow:
    start = _local_midnight_ms(day, tz)
    end = _local_midnight_ms(day + timedelta(days=1), tz) - 1
    return DayWindow(platform=Platform.GOJEK, stat_date=day, start=start, end=end)


class DayWindowRange:
    """Lazy, finite, restartable sequence of day windows.

    Every ``iter()`` starts from the first day again, so the history walker
    and retries can re-walk the same range.
    """

    def __init__(
        self,
        scheduler: "DayWindowScheduler",
        platform: Platform,
        start_date: date,
        end_date: date,
        newest_first: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.platform = platform
        self.start_date = start_date
        self.end_date = end_date
        self.newest_first = newest_first

    def __iter__(self) -> Iterator[DayWindow]:
        if self.start_date > self.end_date:
            return
        count = len(self)
        for offset in range(count):
            if self.newest_first:
                day = self.end_date - timedelta(days=offset)
            else:
                day = self.start_date + timedelta(days=offset)
            yield self.scheduler.window(self.platform, day)

    def __len__(self) -> int:
        if self.start_date > self.end_date:
            return 0
        return (self.end_date - self.start_date).days + 1

    def __repr__(self) -> str:
        order = "newest_first" if self.newest_first else "oldest_first"
        return (
            f"DayWindowRange({self.platform.value}, {self.start_date}..{self.end_date}, {order})"
        )


class DayWindowScheduler:
    """Builds day windows for either platform.

    Args:
        local_tz: Zone used for GoJek day boundaries. ``None`` means the host
            machine's local zone.
    """

    def __init__(self, local_tz: Optional[tzinfo] = None) -> None:
        self.local_tz = local_tz

    def window(self, platform: Platform, day: date) -> DayWindow:
        if platform == Platform.GRAB:
            return grab_window(day)
        return gojek_window(day, self.local_tz)

    def windows(
        self,
        platform: Platform,
        start_date: date,
        end_date: date,
        newest_first: bool = True,
    ) -> DayWindowRange:
        return DayWindowRange(self, platform, start_date, end_date, newest_first)
