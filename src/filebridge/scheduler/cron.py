"""
Cron expressions for job schedules.

Standard 5 fields: minute hour day-of-month month day-of-week. Each field
accepts ``*``, ``n``, ``a-b``, lists and ``/step``; months accept ``jan``-``dec``
and weekdays ``sun``-``sat``, with both ``0`` and ``7`` meaning Sunday. When
day-of-month and day-of-week are both restricted, a day matches if either
does (traditional cron).

Fire times are computed on the wall clock of an IANA timezone: times that do
not exist (spring-forward gap) are skipped, repeated times (fall-back) fire
once.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from filebridge.exceptions import ConfigurationError, CronParseError

MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}
WEEKDAY_NAMES = {name: number for number, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))}

# Search horizon; an expression with no fire time inside it never fires (e.g. "0 0 30 2 *")
SEARCH_YEARS = 5


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    low: int
    high: int
    names: dict[str, int] | None = None


_FIELDS = (
    _FieldSpec("minute", 0, 59),
    _FieldSpec("hour", 0, 23),
    _FieldSpec("day-of-month", 1, 31),
    _FieldSpec("month", 1, 12, MONTH_NAMES),
    # 7 is accepted and folded into 0 (Sunday)
    _FieldSpec("day-of-week", 0, 7, WEEKDAY_NAMES),
)


@dataclass(frozen=True)
class CronExpression:
    expression: str
    minutes: tuple[int, ...]
    hours: tuple[int, ...]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0 = Sunday
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        """
        Parse a 5-field expression.

        Raises:
            CronParseError: On a malformed field

        Examples:
            >>> CronExpression.parse("*/15 9-17 * * mon-fri").hours
            (9, 10, 11, 12, 13, 14, 15, 16, 17)
        """
        if not isinstance(expression, str):
            raise CronParseError(f"Cron expression must be a string, got {type(expression).__name__}")
        parts = expression.split()
        if len(parts) != 5:
            raise CronParseError(f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}")

        minutes, hours, days, months, weekdays = (
            _parse_field(token, spec) for token, spec in zip(parts, _FIELDS, strict=True)
        )
        weekdays = {0 if d == 7 else d for d in weekdays}
        return cls(
            expression=expression,
            minutes=tuple(sorted(minutes)),
            hours=tuple(sorted(hours)),
            days=frozenset(days),
            months=frozenset(months),
            weekdays=frozenset(weekdays),
            day_restricted=not parts[2].startswith("*"),
            weekday_restricted=not parts[4].startswith("*"),
        )

    def matches_day(self, day: date) -> bool:
        if day.month not in self.months:
            return False
        day_match = day.day in self.days
        weekday_match = (day.weekday() + 1) % 7 in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_match or weekday_match
        if self.day_restricted:
            return day_match
        if self.weekday_restricted:
            return weekday_match
        return True

    def iter_fire_times(self, after: datetime, tz: ZoneInfo) -> Iterator[datetime]:
        """Yield fire times strictly after ``after``, as aware datetimes in ``tz``."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=UTC)
        local_after = after.astimezone(tz)
        day = local_after.date()
        horizon = day + timedelta(days=366 * SEARCH_YEARS)
        while day <= horizon:
            if self.matches_day(day):
                for hour in self.hours:
                    for minute in self.minutes:
                        candidate = _localize(datetime.combine(day, time(hour, minute)), tz)
                        if candidate is not None and candidate > after:
                            yield candidate
            day += timedelta(days=1)

    def next_fire_time(self, after: datetime, tz: ZoneInfo) -> datetime:
        """
        Raises:
            CronParseError: The expression never fires
        """
        for fire_time in self.iter_fire_times(after, tz):
            return fire_time
        raise CronParseError(f"Cron expression {self.expression!r} never fires")

    def __str__(self) -> str:
        return self.expression


def _localize(naive: datetime, tz: ZoneInfo) -> datetime | None:
    """Attach ``tz``; None for wall-clock times that do not exist in it."""
    aware = naive.replace(tzinfo=tz, fold=0)
    round_trip = aware.astimezone(UTC).astimezone(tz).replace(tzinfo=None)
    return aware if round_trip == naive else None


def _parse_value(token: str, spec: _FieldSpec) -> int:
    lowered = token.lower()
    if spec.names and lowered in spec.names:
        return spec.names[lowered]
    if not token.isdigit():
        raise CronParseError(f"Invalid {spec.name} value {token!r}")
    value = int(token)
    if not spec.low <= value <= spec.high:
        raise CronParseError(f"{spec.name} value {value} out of range {spec.low}-{spec.high}")
    return value


def _parse_field(token: str, spec: _FieldSpec) -> set[int]:
    values: set[int] = set()
    for part in token.split(","):
        if not part:
            raise CronParseError(f"Empty list item in {spec.name} field {token!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise CronParseError(f"Invalid step in {spec.name} field {token!r}")
            step = int(step_text)

        if part == "*":
            low, high = spec.low, spec.high
        elif "-" in part:
            low_text, high_text = part.split("-", 1)
            low, high = _parse_value(low_text, spec), _parse_value(high_text, spec)
            if low > high:
                raise CronParseError(f"Invalid range {part!r} in {spec.name} field")
        else:
            low = _parse_value(part, spec)
            # "a/n" means every n from a to the end of the range
            high = spec.high if step > 1 else low

        values.update(range(low, high + 1, step))
    return values


def parse_cron(expression: str) -> CronExpression:
    return CronExpression.parse(expression)


def get_timezone(name: str) -> ZoneInfo:
    """
    Raises:
        ConfigurationError: Unknown IANA timezone
    """
    try:
        return ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name!r}", details={"timezone": name}) from e


def next_fire_time(expression: str, *, now: datetime | None = None, timezone: str = "UTC") -> datetime:
    """
    Next fire time of ``expression`` after ``now`` in ``timezone``.

    Raises:
        CronParseError: Invalid expression, or one that never fires
        ConfigurationError: Unknown timezone
    """
    tz = get_timezone(timezone)
    return parse_cron(expression).next_fire_time(now or datetime.now(UTC), tz)


def next_fire_times(
    expression: str, count: int, *, now: datetime | None = None, timezone: str = "UTC"
) -> list[datetime]:
    tz = get_timezone(timezone)
    result = []
    for fire_time in parse_cron(expression).iter_fire_times(now or datetime.now(UTC), tz):
        result.append(fire_time)
        if len(result) >= count:
            break
    if not result and count > 0:
        raise CronParseError(f"Cron expression {expression!r} never fires")
    return result
