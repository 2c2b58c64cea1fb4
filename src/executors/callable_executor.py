"""In-process Python command executor."""

import asyncio
import inspect
from typing import Any, Callable, Optional
import logging
from .base import BaseExecutor, CommandOutput, truncate_output
from exceptions import ExecutionFailed, ExecutionTimeout

logger = logging.getLogger(__name__)


class CallableExecutor(BaseExecutor):
    """Runs a Python callable registered by the hosting application.

    The callable receives the parameter string. Its return value becomes the
    captured output; an int return value is treated as the exit code.
    Synchronous callables run in the default thread pool so they do not
    stall the scheduler loop.
    """

    def __init__(self, func: Callable[[str], Any], description: str = ""):
        self.func = func
        self.description = description or (inspect.getdoc(func) or "").split("\n")[0]

    async def _call(self, parameters: str):
        if inspect.iscoroutinefunction(self.func):
            return await self.func(parameters)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.func, parameters)

    async def execute(self, parameters: str, timeout: Optional[float] = None) -> CommandOutput:
        try:
            value = await asyncio.wait_for(self._call(parameters), timeout=timeout or None)
        except asyncio.TimeoutError:
            raise ExecutionTimeout(timeout) from None
        except (ExecutionFailed, ExecutionTimeout):
            raise
        except Exception as e:
            logger.warning(f"Callable command raised {type(e).__name__}: {e}")
            raise ExecutionFailed(f"{type(e).__name__}: {e}") from e

        if value is None or value is True:
            return CommandOutput(exit_code=0)
        if value is False:
            return CommandOutput(exit_code=1)
        if isinstance(value, int):
            return CommandOutput(exit_code=value)
        return CommandOutput(exit_code=0, output=truncate_output(str(value)))
