"""Schedule matching for time-triggered rules: pure Python, no external deps."""

from __future__ import annotations

from datetime import datetime, timedelta

_FIELD_NAMES = ("minute", "hour", "day", "month", "weekday")
_FIELD_RANGES = (
    (0, 59),
    (0, 23),
    (1, 31),
    (1, 12),
    (0, 7),  # 0 and 7 are both Sunday
)


class ScheduleParser:
    """Parses and matches 5-field cron expressions.

    Matching is done at minute granularity against the wall-clock instant
    handed in; a minute that is never presented is never fired for.
    """

    @staticmethod
    def parse_cron(expression: str) -> dict[str, frozenset[int]]:
        """Parse a 5-field cron expression into component dict.

        Returns: {minute, hour, day, month, weekday} with the matching values.
        Supports: *, specific numbers, ranges (1-5), steps (*/15), lists (1,3,5)

        Raises:
            ValueError: If the expression does not have exactly 5 fields or a
                field is out of range.
        """
        fields = expression.strip().split()
        if len(fields) != 5:
            msg = f"Cron expression must have 5 fields, got {len(fields)}: {expression!r}"
            raise ValueError(msg)

        result: dict[str, frozenset[int]] = {}
        for name, field_str, (lo, hi) in zip(_FIELD_NAMES, fields, _FIELD_RANGES, strict=True):
            values = _parse_cron_field(field_str, lo, hi)
            if name == "weekday" and 7 in values:
                values = (values - {7}) | {0}
            result[name] = frozenset(values)
        return result

    @staticmethod
    def is_valid(expression: str) -> bool:
        try:
            ScheduleParser.parse_cron(expression)
        except ValueError:
            return False
        return True

    @staticmethod
    def matches(expression: str, when: datetime) -> bool:
        """Return True if all five fields match the minute containing *when*."""
        parsed = ScheduleParser.parse_cron(expression)
        return _matches_parsed(parsed, when)

    @staticmethod
    def next_fire(expression: str, after: datetime, horizon_days: int = 366) -> datetime | None:
        """Return the next matching minute strictly after *after*, or None.

        Iterates minute-by-minute; only used for display, never for firing.
        """
        parsed = ScheduleParser.parse_cron(expression)
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        cap = after + timedelta(days=horizon_days)
        while candidate <= cap:
            if _matches_parsed(parsed, candidate):
                return candidate
            candidate += timedelta(minutes=1)
        return None


def cron_weekday(when: datetime) -> int:
    """Weekday in cron numbering (Sunday = 0)."""
    return (when.weekday() + 1) % 7


def _matches_parsed(parsed: dict[str, frozenset[int]], when: datetime) -> bool:
    return (
        when.minute in parsed["minute"]
        and when.hour in parsed["hour"]
        and when.day in parsed["day"]
        and when.month in parsed["month"]
        and cron_weekday(when) in parsed["weekday"]
    )


def _parse_cron_field(field: str, lo: int, hi: int) -> set[int]:
    """Parse a single cron field into the set of matching integers."""
    values: set[int] = set()

    for part in field.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty cron field segment in {field!r}")
        try:
            if "/" in part:
                # Step: */15 or 1-30/5
                base, step_str = part.split("/", 1)
                step = int(step_str)
                if step <= 0:
                    raise ValueError(f"Cron step must be positive: {part!r}")
                if base == "*":
                    start, end = lo, hi
                elif "-" in base:
                    start_str, end_str = base.split("-", 1)
                    start, end = int(start_str), int(end_str)
                else:
                    start, end = int(base), hi
                span = range(start, end + 1, step)
            elif "-" in part:
                start_str, end_str = part.split("-", 1)
                start, end = int(start_str), int(end_str)
                span = range(start, end + 1)
            elif part == "*":
                start, end = lo, hi
                span = range(lo, hi + 1)
            else:
                start = end = int(part)
                span = range(start, start + 1)
        except ValueError as exc:
            raise ValueError(f"Invalid cron field {field!r}: {exc}") from exc

        if start < lo or end > hi or start > end:
            raise ValueError(f"Cron field {field!r} out of range {lo}-{hi}")
        values.update(span)

    return values
