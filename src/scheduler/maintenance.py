"""Host-wide maintenance mode.

Maintenance is signalled by a flag file so every process on the host, and
any deployment script, sees the same state.
"""

from pathlib import Path
from typing import Optional
import logging

from config import settings

logger = logging.getLogger(__name__)


class MaintenanceMode:
    def __init__(self, flag_file: Optional[str] = None):
        self.flag_file = Path(flag_file or settings.maintenance_file)

    def is_active(self) -> bool:
        return self.flag_file.exists()

    def enable(self, message: str = ""):
        self.flag_file.parent.mkdir(parents=True, exist_ok=True)
        self.flag_file.write_text(message)
        logger.warning(f"Maintenance mode enabled ({self.flag_file})")

    def disable(self):
        if self.flag_file.exists():
            self.flag_file.unlink()
            logger.warning("Maintenance mode disabled")

    def message(self) -> str:
        return self.flag_file.read_text() if self.is_active() else ""
