"""Catalog of named frequencies.

Every frequency is backed by a cron expression so that it stays aligned to
the wall clock: a task running "every five minutes" fires at :00, :05, :10
and so on, whatever the moment it was created or last completed.
"""

from dataclasses import dataclass
from typing import Dict

from exceptions import UnknownFrequency


@dataclass(frozen=True)
class Frequency:
    key: str
    label: str
    expression: str

    def to_dict(self):
        return {"interval": self.key, "label": self.label, "expression": self.expression}


FREQUENCIES = (
    Frequency("everyMinute", "Every Minute", "* * * * *"),
    Frequency("everyFiveMinutes", "Every Five Minutes", "*/5 * * * *"),
    Frequency("everyTenMinutes", "Every Ten Minutes", "*/10 * * * *"),
    Frequency("everyFifteenMinutes", "Every Fifteen Minutes", "*/15 * * * *"),
    Frequency("everyThirtyMinutes", "Every Thirty Minutes", "0,30 * * * *"),
    Frequency("hourly", "Hourly", "0 * * * *"),
    Frequency("everyTwoHours", "Every Two Hours", "0 */2 * * *"),
    Frequency("everySixHours", "Every Six Hours", "0 */6 * * *"),
    Frequency("daily", "Daily", "0 0 * * *"),
    Frequency("twiceDaily", "Twice Daily", "0 1,13 * * *"),
    Frequency("weekly", "Weekly", "0 0 * * 0"),
    Frequency("monthly", "Monthly", "0 0 1 * *"),
    Frequency("quarterly", "Quarterly", "0 0 1 1-12/3 *"),
    Frequency("yearly", "Yearly", "0 0 1 1 *"),
)

_BY_KEY: Dict[str, Frequency] = {f.key: f for f in FREQUENCIES}


def _fold(value: str) -> str:
    return "".join(value.split()).lower()


_BY_FOLDED: Dict[str, Frequency] = {}
for _frequency in FREQUENCIES:
    _BY_FOLDED[_fold(_frequency.key)] = _frequency
    _BY_FOLDED[_fold(_frequency.label)] = _frequency


def get_frequency(key: str) -> Frequency:
    try:
        return _BY_KEY[key]
    except KeyError:
        raise UnknownFrequency(key) from None


def normalize_frequency(value: str) -> str:
    """Map user input to a canonical frequency key.

    Accepts the key itself or the display label, ignoring case and spaces,
    so "every five minutes" and "everyFiveMinutes" both yield
    "everyFiveMinutes".
    """
    frequency = _BY_FOLDED.get(_fold(value or ""))
    if frequency is None:
        raise UnknownFrequency(value)
    return frequency.key
