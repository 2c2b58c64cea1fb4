"""Command catalog: the names tasks may refer to."""

from typing import Dict, List, Optional
import logging

from config import Settings, settings as default_settings
from exceptions import UnknownCommand
from .base import BaseExecutor
from .http_executor import HTTPExecutor
from .shell_executor import ShellExecutor

logger = logging.getLogger(__name__)


class CommandCatalog:
    """Maps command names to the runners that execute them."""

    def __init__(self):
        self._executors: Dict[str, BaseExecutor] = {}

    def register(self, name: str, executor: BaseExecutor, description: Optional[str] = None):
        """Register a runner under a command name.

        Args:
            name: Command name tasks refer to
            executor: Runner instance
            description: Display text, defaults to the runner's own
        """
        if description is not None:
            executor.description = description
        self._executors[name] = executor
        logger.info(f"Registered command: {name}")

    def resolve(self, name: str) -> BaseExecutor:
        try:
            return self._executors[name]
        except KeyError:
            raise UnknownCommand(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._executors

    def list_commands(self) -> List[Dict[str, str]]:
        return [
            {"name": name, "description": executor.description}
            for name, executor in sorted(self._executors.items())
        ]


def build_default_catalog(config: Settings = None) -> CommandCatalog:
    """Build the catalog from the ``commands`` and ``http_commands`` settings."""
    config = config or default_settings
    catalog = CommandCatalog()

    for name, command_line in config.commands.items():
        catalog.register(name, ShellExecutor(command_line))

    for name, spec in config.http_commands.items():
        catalog.register(name, HTTPExecutor(
            url=spec["url"],
            method=spec.get("method", "POST"),
            headers=spec.get("headers"),
            description=spec.get("description", "")
        ))

    return catalog
