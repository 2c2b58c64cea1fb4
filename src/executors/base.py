"""Base executor class and interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import logging

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class CommandOutput:
    """What a command produced before it exited."""
    exit_code: int
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def truncate_output(text: str, limit: Optional[int] = None) -> str:
    limit = settings.max_output_size if limit is None else limit
    if limit and len(text) > limit:
        return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"
    return text


class BaseExecutor(ABC):
    """Base class for command runners.

    Runners are registered in the command catalog under a name; tasks refer
    to that name and supply a free-form parameter string.
    """

    description: str = ""

    @abstractmethod
    async def execute(self, parameters: str, timeout: Optional[float] = None) -> CommandOutput:
        """Run the command with the given parameters.

        Raises:
            ExecutionTimeout: the command exceeded timeout and was stopped
            ExecutionFailed: the command could not be run at all
        """
        pass
