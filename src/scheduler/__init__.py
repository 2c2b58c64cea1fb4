"""Task scheduler core functionality."""

from .core import SchedulerManager, TaskState, TickReport
from .cron_parser import ExpressionEvaluator, parse_cron_expression, validate_cron
from .frequencies import FREQUENCIES, get_frequency, normalize_frequency
from .registry import TaskRegistry
from .results import ResultStore
from .retention import RetentionManager

__all__ = [
    "SchedulerManager",
    "TaskState",
    "TickReport",
    "ExpressionEvaluator",
    "parse_cron_expression",
    "validate_cron",
    "FREQUENCIES",
    "get_frequency",
    "normalize_frequency",
    "TaskRegistry",
    "ResultStore",
    "RetentionManager"
]
