"""Mutual exclusion between scheduler instances.

Locks are leases: every lock carries an expiry so a server that crashed
while holding one blocks its task for at most the TTL.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Tuple
import logging

from sqlalchemy.exc import IntegrityError

from database import DatabaseManager
from models import ScheduleLock, utcnow

logger = logging.getLogger(__name__)


def one_server_key(task_id: int, due_at: datetime) -> str:
    return f"one-server:{task_id}:{due_at.isoformat()}"


def overlap_key(task_id: int) -> str:
    return f"overlap:{task_id}"


async def keep_alive(lock_service: "LockService", key: str, owner: str, ttl: int):
    """Renew a held lease at half its TTL until cancelled."""
    if ttl <= 0:
        return
    while True:
        await asyncio.sleep(ttl / 2)
        try:
            renewed = lock_service.acquire(key, owner, ttl)
        except Exception as e:
            logger.error(f"Could not renew lock '{key}': {e}", exc_info=True)
            continue
        if not renewed:
            logger.warning(f"Lost lock '{key}' held by {owner}")
            return


class LockService(ABC):
    @abstractmethod
    def acquire(self, key: str, owner: str, ttl: int) -> bool:
        """Take the lock unless someone else holds an unexpired lease."""

    @abstractmethod
    def release(self, key: str, owner: str) -> bool:
        """Release the lock if ``owner`` holds it."""

    @abstractmethod
    def is_held(self, key: str) -> bool:
        """Whether any unexpired lease exists for ``key``."""


class InMemoryLockService(LockService):
    """Locks shared by the schedulers of a single process."""

    def __init__(self):
        self._leases: Dict[str, Tuple[str, datetime]] = {}
        self._guard = threading.Lock()

    def acquire(self, key: str, owner: str, ttl: int) -> bool:
        now = utcnow()
        with self._guard:
            lease = self._leases.get(key)
            if lease and lease[1] > now and lease[0] != owner:
                return False
            self._leases[key] = (owner, now + timedelta(seconds=ttl))
            return True

    def release(self, key: str, owner: str) -> bool:
        with self._guard:
            lease = self._leases.get(key)
            if lease and lease[0] == owner:
                del self._leases[key]
                return True
            return False

    def is_held(self, key: str) -> bool:
        with self._guard:
            lease = self._leases.get(key)
            return bool(lease and lease[1] > utcnow())


class DatabaseLockService(LockService):
    """Locks stored in the ``scheduler_locks`` table.

    The lock key is the primary key, so two servers inserting the same key
    cannot both succeed; the loser sees an IntegrityError.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def acquire(self, key: str, owner: str, ttl: int) -> bool:
        now = utcnow()
        expires = now + timedelta(seconds=ttl)

        with self.db_manager.get_session() as session:
            # Purge every expired lease, a crashed holder never releases its own
            session.query(ScheduleLock).filter(
                ScheduleLock.expires_at <= now
            ).delete(synchronize_session=False)

            # Re-entrant for the current holder
            refreshed = session.query(ScheduleLock).filter(
                ScheduleLock.lock_key == key,
                ScheduleLock.owner == owner
            ).update({ScheduleLock.expires_at: expires}, synchronize_session=False)
            if refreshed:
                return True

        try:
            with self.db_manager.get_session() as session:
                session.add(ScheduleLock(lock_key=key, owner=owner, acquired_at=now, expires_at=expires))
        except IntegrityError:
            logger.debug(f"Lock '{key}' already held")
            return False

        logger.debug(f"Acquired lock '{key}' for {owner}")
        return True

    def release(self, key: str, owner: str) -> bool:
        with self.db_manager.get_session() as session:
            deleted = session.query(ScheduleLock).filter(
                ScheduleLock.lock_key == key,
                ScheduleLock.owner == owner
            ).delete(synchronize_session=False)

        if deleted:
            logger.debug(f"Released lock '{key}'")
        return bool(deleted)

    def is_held(self, key: str) -> bool:
        with self.db_manager.get_session() as session:
            return session.query(ScheduleLock).filter(
                ScheduleLock.lock_key == key,
                ScheduleLock.expires_at > utcnow()
            ).count() > 0
