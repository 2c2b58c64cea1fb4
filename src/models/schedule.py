"""Schedule representations.

A task is scheduled either by a cron expression or by a named frequency from
the catalog, never both. ``Schedule`` is the union of the two; code that
consumes it dispatches on the concrete type and rejects anything else.
"""

from dataclasses import dataclass
from typing import Optional, Union

from exceptions import ScheduleConflict


@dataclass(frozen=True)
class CronSchedule:
    expression: str

    def to_dict(self):
        return {"type": "cron", "expression": self.expression}


@dataclass(frozen=True)
class FrequencySchedule:
    key: str

    def to_dict(self):
        return {"type": "frequency", "frequency": self.key}


Schedule = Union[CronSchedule, FrequencySchedule]


def schedule_from_fields(expression: Optional[str], frequency: Optional[str]) -> Schedule:
    """Build the schedule from the two nullable columns it is stored in.

    Raises:
        ScheduleConflict: both or neither of the fields are set
    """
    expression = (expression or "").strip()
    frequency = (frequency or "").strip()

    if expression and frequency:
        raise ScheduleConflict("A task cannot have both a cron expression and a frequency")
    if expression:
        return CronSchedule(expression)
    if frequency:
        return FrequencySchedule(frequency)
    raise ScheduleConflict("A task needs either a cron expression or a frequency")
