"""HTTP command executor."""

import httpx
from typing import Dict, Optional
import logging
from .base import BaseExecutor, CommandOutput, truncate_output
from config import settings
from exceptions import ExecutionFailed, ExecutionTimeout

logger = logging.getLogger(__name__)


class HTTPExecutor(BaseExecutor):
    """Executor that calls an HTTP endpoint.

    The task's parameter string is sent as the ``parameters`` query argument
    for GET and DELETE requests and as the request body otherwise. Any 2xx
    response counts as success; other statuses become the exit code.
    """

    def __init__(self, url: str, method: str = "POST", headers: Optional[Dict[str, str]] = None,
                 description: str = ""):
        self.url = url
        self.method = method.upper()
        self.headers = headers or {}
        self.description = description or f"{self.method} {url}"

    async def execute(self, parameters: str, timeout: Optional[float] = None) -> CommandOutput:
        request_args = {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "timeout": timeout or settings.http_timeout
        }

        if parameters:
            if self.method in ("GET", "DELETE"):
                request_args["params"] = {"parameters": parameters}
            else:
                request_args["content"] = parameters

        try:
            async with httpx.AsyncClient() as client:
                logger.info(f"Executing HTTP {self.method} request to {self.url}")
                response = await client.request(**request_args)
        except httpx.TimeoutException:
            logger.error(f"Request to {self.url} timed out after {request_args['timeout']} seconds")
            raise ExecutionTimeout(request_args["timeout"]) from None
        except httpx.HTTPError as e:
            raise ExecutionFailed(f"HTTP request failed: {e}") from e

        success = 200 <= response.status_code < 300
        logger.info(f"HTTP request completed with status {response.status_code}")

        return CommandOutput(
            exit_code=0 if success else response.status_code,
            output=truncate_output(f"HTTP {response.status_code}\n{response.text}")
        )
