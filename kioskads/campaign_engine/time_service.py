"""
Reference Clock

Time abstraction pinned to the configured business timezone. Every date
comparison in the engine goes through this instead of the host clock.
"""

import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .config import CampaignEngineConfig

logger = logging.getLogger(__name__)


class ReferenceClock:
    """Current time and calendar date in the reference timezone."""

    def __init__(self, config: CampaignEngineConfig):
        self.config = config
        self._tz = config.tzinfo
        self._frozen_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        """Returns the current instant, aware, in the reference timezone."""
        with self._lock:
            frozen = self._frozen_at
        if frozen is not None:
            return frozen.astimezone(self._tz)
        return datetime.now(timezone.utc).astimezone(self._tz)

    def today(self) -> date:
        """Calendar date in the reference timezone."""
        return self.now().date()

    def freeze(self, at: datetime) -> None:
        """Pin the clock to a fixed instant (naive values are read as reference-local)."""
        if at.tzinfo is None:
            at = at.replace(tzinfo=self._tz)
        with self._lock:
            self._frozen_at = at
        logger.info(f"Reference clock frozen at {at.isoformat()}")

    def advance(self, hours: float) -> datetime:
        """Move a frozen clock forward."""
        with self._lock:
            if self._frozen_at is None:
                raise ValueError("Reference clock is not frozen")
            self._frozen_at = self._frozen_at + timedelta(hours=hours)
            new_time = self._frozen_at
        logger.info(f"Reference clock advanced {hours}h to {new_time.isoformat()}")
        return new_time

    def unfreeze(self) -> None:
        with self._lock:
            self._frozen_at = None

    def is_frozen(self) -> bool:
        with self._lock:
            return self._frozen_at is not None

    def get_status(self) -> dict:
        """Get current clock status."""
        now = self.now()
        return {
            "timezone": self.config.reference_timezone,
            "now": now.isoformat(),
            "today": now.date().isoformat(),
            "frozen": self.is_frozen(),
        }
