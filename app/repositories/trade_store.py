"""
Trade Store

Redis-backed repository for strategy positions and their target sets.

Keys:
    virtual:positions:{scrip_code}  Position JSON (kept after close)
    strategy:targets:{scrip_code}   TargetSet JSON (removed on full exit)
    strategy:lock:{scrip_code}      Advisory per-instrument lock
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError

from app.domain.models.position import Position
from app.domain.models.target_set import TargetSet
from app.shared.exceptions import TradePersistenceError
from app.core.logger import get_logger

logger = get_logger(__name__)

POSITION_PREFIX = "virtual:positions:"
TARGETS_PREFIX = "strategy:targets:"
LOCK_PREFIX = "strategy:lock:"

LOCK_POLL_INTERVAL_SECONDS = 0.05


def position_key(scrip_code: str) -> str:
    return f"{POSITION_PREFIX}{scrip_code}"


def targets_key(scrip_code: str) -> str:
    return f"{TARGETS_PREFIX}{scrip_code}"


def lock_key(scrip_code: str) -> str:
    return f"{LOCK_PREFIX}{scrip_code}"


class TradeStore:
    """
    Repository for Position and TargetSet records.

    Reads return typed models (None when missing or malformed) and let
    Redis errors propagate. Writes raise TradePersistenceError.

    Usage:
        store = TradeStore(redis_client)
        target_set = await store.get_target_set("52431")
        async with store.instrument_lock("52431", wait_seconds=1.0) as acquired:
            if acquired:
                ...
    """

    def __init__(self, redis_client: redis.Redis, lock_ttl_ms: int = 5000):
        self.redis = redis_client
        self.lock_ttl_ms = lock_ttl_ms

    # ==================== POSITIONS ====================

    async def get_position(self, scrip_code: str) -> Optional[Position]:
        """Get position by instrument code."""
        return Position.from_json(await self.redis.get(position_key(scrip_code)))

    async def save_position(self, position: Position) -> None:
        """Create or replace a position."""
        await self._write(position_key(position.scrip_code), position.to_json())

    # ==================== TARGET SETS ====================

    async def get_target_set(self, scrip_code: str) -> Optional[TargetSet]:
        """Get target set by instrument code."""
        return TargetSet.from_json(await self.redis.get(targets_key(scrip_code)))

    async def save_target_set(self, target_set: TargetSet) -> None:
        """Create or replace a target set."""
        await self._write(targets_key(target_set.scrip_code), target_set.to_json())

    async def list_scrip_codes(self) -> List[str]:
        """Instrument codes of every active target set, sorted."""
        codes = []
        async for key in self.redis.scan_iter(match=f"{TARGETS_PREFIX}*"):
            codes.append(key[len(TARGETS_PREFIX):])
        return sorted(codes)

    async def list_target_sets(self) -> List[TargetSet]:
        """
        Load every active target set.

        Malformed records and keys removed mid-scan are skipped.
        """
        target_sets = []
        for scrip_code in await self.list_scrip_codes():
            target_set = await self.get_target_set(scrip_code)
            if target_set is not None:
                target_sets.append(target_set)
        return target_sets

    async def save_trade(self, position: Position, target_set: TargetSet) -> None:
        """
        Persist a position and its target set in one transaction.

        Raises:
            TradePersistenceError: If the write fails
        """
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(position_key(position.scrip_code), position.to_json())
                pipe.set(targets_key(target_set.scrip_code), target_set.to_json())
                await pipe.execute()
        except redis.RedisError as e:
            raise TradePersistenceError(f"Failed to persist trade {position.scrip_code}: {e}") from e

    async def retire_trade(self, scrip_code: str, position: Optional[Position]) -> None:
        """
        Write the closed position and remove its target set in one transaction.

        Raises:
            TradePersistenceError: If the write fails (both records unchanged)
        """
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                if position is not None:
                    pipe.set(position_key(position.scrip_code), position.to_json())
                pipe.delete(targets_key(scrip_code))
                await pipe.execute()
        except redis.RedisError as e:
            raise TradePersistenceError(f"Failed to retire trade {scrip_code}: {e}") from e

    async def _write(self, key: str, value: str) -> None:
        try:
            await self.redis.set(key, value)
        except redis.RedisError as e:
            raise TradePersistenceError(f"Failed to write {key}: {e}") from e

    # ==================== INSTRUMENT LOCK ====================

    @asynccontextmanager
    async def instrument_lock(self, scrip_code: str, wait_seconds: float = 0.0) -> AsyncIterator[bool]:
        """
        Hold the instrument lock for a read-modify-write.

        Uses the redis-py token lock: SET NX PX to acquire, a Lua
        compare-and-delete to release, so an expired lock taken over by
        another writer is never deleted by its previous holder.

        Args:
            scrip_code: Instrument code
            wait_seconds: How long to keep retrying before giving up

        Yields:
            True if the lock was acquired
        """
        lock = self.redis.lock(
            lock_key(scrip_code),
            timeout=self.lock_ttl_ms / 1000,
            sleep=LOCK_POLL_INTERVAL_SECONDS,
            thread_local=False,
        )
        if wait_seconds > 0:
            acquired = await lock.acquire(blocking=True, blocking_timeout=wait_seconds)
        else:
            acquired = await lock.acquire(blocking=False)

        try:
            yield acquired
        finally:
            if acquired:
                await self._release(lock, scrip_code)

    async def _release(self, lock: Lock, scrip_code: str) -> None:
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning(f"Lock for {scrip_code} expired before release")
        except redis.RedisError as e:
            logger.warning(f"Failed to release lock for {scrip_code}: {e}")
