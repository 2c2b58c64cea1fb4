"""HTTP API for CronKeeper."""

from .http_server import app
from .endpoints import router

__all__ = ["app", "router"]
