"""Cron expression parsing and next-run evaluation."""

from croniter import croniter
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from exceptions import InvalidExpression, InvalidTimezone
from models import Schedule, CronSchedule, FrequencySchedule
from .frequencies import get_frequency

logger = logging.getLogger(__name__)

# Larger than any DST shift in the tz database
_DST_MARGIN = timedelta(hours=3)


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        InvalidTimezone: name is not a known zone
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise InvalidTimezone(name) from None


def check_cron(expression: str):
    """Raise InvalidExpression unless expression is a 5 or 6 field cron string."""
    if not isinstance(expression, str) or len(expression.split()) not in (5, 6):
        raise InvalidExpression(str(expression), "expected 5 or 6 fields")
    try:
        croniter(expression)
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidExpression(expression, str(e)) from None


def validate_cron(expression: str) -> bool:
    """Validate a cron expression.

    Args:
        expression: Cron expression string (e.g., "0 */2 * * *")

    Returns:
        True if valid, False otherwise
    """
    try:
        check_cron(expression)
        return True
    except InvalidExpression as e:
        logger.debug(str(e))
        return False


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _local_base(reference: datetime, zone: ZoneInfo) -> datetime:
    """Naive wall time to start matching from.

    Right after a DST change, wall times from before the change can still
    map to instants after ``reference``, so matching starts earlier.
    """
    local = reference.astimezone(zone)
    earlier = (reference - _DST_MARGIN).astimezone(zone)
    if earlier.utcoffset() != local.utcoffset():
        return earlier.replace(tzinfo=None)
    return local.replace(tzinfo=None)


def parse_cron_expression(expression: str, base_time: Optional[datetime] = None,
                          tz: str = "UTC") -> datetime:
    """Get the next execution time of a cron expression.

    The expression is matched against the wall clock of ``tz``, so a daily
    midnight job fires at local midnight on both sides of a DST change.

    Args:
        expression: Cron expression string
        base_time: Reference instant, naive values are read as UTC (default: now)
        tz: IANA timezone the expression is written in

    Returns:
        Next execution instant strictly after base_time, timezone-aware UTC

    Raises:
        InvalidExpression: expression does not parse
        InvalidTimezone: tz is unknown
    """
    check_cron(expression)
    zone = get_zone(tz)
    reference = _as_utc(base_time or datetime.now(timezone.utc))

    itr = croniter(expression, _local_base(reference, zone))
    while True:
        try:
            candidate = itr.get_next(datetime)
        except (ValueError, KeyError) as e:
            raise InvalidExpression(expression, str(e)) from None

        # fold=0: a repeated wall time maps to its first occurrence, a skipped
        # one keeps the pre-transition offset and lands just after the gap
        aware = candidate.replace(tzinfo=zone)
        if aware > reference:
            return aware.astimezone(timezone.utc)


def get_cron_description(expression: str) -> str:
    """Get human-readable description of cron expression.

    Args:
        expression: Cron expression string

    Returns:
        Human-readable description
    """
    # Common patterns
    patterns = {
        "* * * * *": "Every minute",
        "*/5 * * * *": "Every 5 minutes",
        "*/10 * * * *": "Every 10 minutes",
        "*/15 * * * *": "Every 15 minutes",
        "*/30 * * * *": "Every 30 minutes",
        "0 * * * *": "Every hour",
        "0 */2 * * *": "Every 2 hours",
        "0 */6 * * *": "Every 6 hours",
        "0 0 * * *": "Daily at midnight",
        "0 12 * * *": "Daily at noon",
        "0 0 * * 0": "Weekly on Sunday at midnight",
        "0 0 * * 1": "Weekly on Monday at midnight",
        "0 0 1 * *": "Monthly on the 1st at midnight",
        "0 0 1 1 *": "Yearly on January 1st at midnight",
    }

    if expression in patterns:
        return patterns[expression]

    parts = expression.split()
    if len(parts) != 5:
        return expression

    minute, hour, day, month, weekday = parts
    desc_parts = []

    if minute != "*":
        if minute.startswith("*/"):
            desc_parts.append(f"every {minute[2:]} minutes")
        else:
            desc_parts.append(f"at minute {minute}")

    if hour != "*":
        if hour.startswith("*/"):
            desc_parts.append(f"every {hour[2:]} hours")
        else:
            desc_parts.append(f"at hour {hour}")

    if day != "*":
        desc_parts.append(f"on day {day}")

    if month != "*":
        months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                  "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
        if month.isdigit() and 1 <= int(month) <= 12:
            desc_parts.append(f"in {months[int(month) - 1]}")
        else:
            desc_parts.append(f"in month {month}")

    if weekday != "*":
        days = ["Sunday", "Monday", "Tuesday", "Wednesday",
                "Thursday", "Friday", "Saturday"]
        if weekday.isdigit() and 0 <= int(weekday) <= 6:
            desc_parts.append(f"on {days[int(weekday)]}")
        else:
            desc_parts.append(f"on weekday {weekday}")

    if desc_parts:
        return "Runs " + ", ".join(desc_parts)
    return "Every minute"


class ExpressionEvaluator:
    """Turns a schedule into concrete next-run instants.

    The default timezone is passed in explicitly and applies to tasks that
    do not name their own.
    """

    def __init__(self, default_timezone: str = "UTC"):
        get_zone(default_timezone)
        self.default_timezone = default_timezone

    def expression_for(self, schedule: Schedule) -> str:
        if isinstance(schedule, CronSchedule):
            return schedule.expression
        if isinstance(schedule, FrequencySchedule):
            return get_frequency(schedule.key).expression
        raise TypeError(f"Unsupported schedule: {schedule!r}")

    def validate(self, schedule: Schedule, tz: Optional[str] = None):
        check_cron(self.expression_for(schedule))
        get_zone(tz or self.default_timezone)

    def next_run(self, schedule: Schedule, reference: datetime,
                 tz: Optional[str] = None) -> datetime:
        return parse_cron_expression(
            self.expression_for(schedule),
            reference,
            tz or self.default_timezone
        )

    def describe(self, schedule: Schedule) -> str:
        if isinstance(schedule, FrequencySchedule):
            return get_frequency(schedule.key).label
        return get_cron_description(self.expression_for(schedule))
