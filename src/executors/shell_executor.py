"""Shell command executor."""

import asyncio
import os
import shlex
from typing import Dict, List, Optional
import logging
from .base import BaseExecutor, CommandOutput, truncate_output
from config import settings
from exceptions import ExecutionFailed, ExecutionTimeout

logger = logging.getLogger(__name__)


class ShellExecutor(BaseExecutor):
    """Executor for commands on the host system.

    The configured command line is split with shlex and the task's
    parameter string is split the same way and appended, so parameters are
    never interpreted by a shell unless ``shell=True``.
    """

    def __init__(self, command: str, description: str = "", env: Optional[Dict[str, str]] = None,
                 working_dir: Optional[str] = None, shell: bool = False):
        self.command = command
        self.description = description or command
        self.env = env or {}
        self.working_dir = working_dir
        self.shell = shell

    def _validate_command(self, argv: List[str]) -> bool:
        """Validate if command is allowed to run."""
        if not settings.allow_host_commands:
            logger.error("Host commands are disabled in configuration")
            return False

        if settings.allowed_commands and argv and argv[0] not in settings.allowed_commands:
            logger.error(f"Command '{argv[0]}' not in allowed commands list")
            return False

        return True

    async def execute(self, parameters: str, timeout: Optional[float] = None) -> CommandOutput:
        try:
            argv = shlex.split(self.command) + shlex.split(parameters or "")
        except ValueError as e:
            raise ExecutionFailed(f"Cannot parse command line: {e}") from None

        if not argv:
            raise ExecutionFailed("Command is empty")
        if not self._validate_command(argv):
            raise ExecutionFailed(f"Command not allowed: {argv[0]}")

        env = os.environ.copy()
        env.update(self.env)

        logger.info(f"Executing shell command: {self.command}")
        if parameters:
            logger.debug(f"Parameters: {parameters}")

        try:
            if self.shell:
                process = await asyncio.create_subprocess_shell(
                    " ".join(shlex.quote(arg) for arg in argv),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=self.working_dir,
                    env=env
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=self.working_dir,
                    env=env
                )
        except OSError as e:
            raise ExecutionFailed(f"Cannot start '{argv[0]}': {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout or None)
        except asyncio.TimeoutError:
            # Kill the process on timeout
            process.kill()
            await process.wait()
            logger.error(f"Command '{self.command}' timed out after {timeout} seconds")
            raise ExecutionTimeout(timeout) from None

        output = truncate_output(stdout.decode("utf-8", errors="replace") if stdout else "")

        if process.returncode == 0:
            logger.info(f"Command completed successfully (exit code: {process.returncode})")
        else:
            logger.warning(f"Command failed with exit code: {process.returncode}")

        return CommandOutput(exit_code=process.returncode, output=output)
