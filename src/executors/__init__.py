"""Command runners and the catalog that names them."""

from .base import BaseExecutor, CommandOutput
from .callable_executor import CallableExecutor
from .catalog import CommandCatalog, build_default_catalog
from .http_executor import HTTPExecutor
from .shell_executor import ShellExecutor

__all__ = [
    "BaseExecutor",
    "CommandOutput",
    "CallableExecutor",
    "CommandCatalog",
    "build_default_catalog",
    "HTTPExecutor",
    "ShellExecutor"
]
