"""
Pytest configuration and shared fixtures.

Provides an in-memory Redis double, settings, a virtual clock and fully
wired trade services.
"""

import asyncio
import fnmatch
import itertools
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import redis.asyncio as redis
from redis.exceptions import LockError, LockNotOwnedError

from app.config.settings import Settings
from app.domain.models.trade_request import StrategyTradeRequest
from app.scheduling.clock import VirtualClock
from app.services.factory import build_trade_services

# Monday 2026-03-02 10:00 IST
MARKET_OPEN = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)


# ==================== REDIS DOUBLE ====================

class FakePipeline:
    """Transactional pipeline supporting SET and DEL."""

    def __init__(self, fake: "FakeRedis"):
        self.fake = fake
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.commands.clear()
        return False

    def set(self, key: str, value: str, **kwargs):
        self.commands.append(("set", key, value))
        return self

    def delete(self, *keys: str):
        for key in keys:
            self.commands.append(("delete", key, None))
        return self

    async def execute(self):
        self.fake._check("execute")
        for command, key, value in self.commands:
            if command == "set":
                self.fake.data[key] = value
            else:
                self.fake.data.pop(key, None)
            self.fake.expires.pop(key, None)
        results = [True] * len(self.commands)
        self.commands.clear()
        return results


class FakeLock:
    """
    Token lock with the redis.asyncio.lock.Lock interface.

    Acquire is SET NX PX on the double; release deletes only while the
    stored token is still ours, like the Lua release script.
    """

    def __init__(self, fake: "FakeRedis", name: str, timeout: Optional[float] = None, sleep: float = 0.1, **kwargs):
        self.fake = fake
        self.name = name
        self.timeout = timeout
        self.sleep = sleep
        self.token: Optional[str] = None

    async def acquire(self, blocking: bool = True, blocking_timeout: Optional[float] = None) -> bool:
        token = uuid.uuid4().hex
        px = int(self.timeout * 1000) if self.timeout else None
        loop = asyncio.get_running_loop()
        stop_at = loop.time() + blocking_timeout if blocking_timeout is not None else None
        while True:
            if await self.fake.set(self.name, token, nx=True, px=px):
                self.token = token
                return True
            if not blocking:
                return False
            if stop_at is not None and loop.time() + self.sleep > stop_at:
                return False
            await asyncio.sleep(self.sleep)

    async def release(self) -> None:
        if self.token is None:
            raise LockError("Cannot release an unlocked lock")
        self.fake._check("eval")
        self.fake._purge(self.name)
        expected, self.token = self.token, None
        if self.fake.data.get(self.name) != expected:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")
        self.fake.data.pop(self.name, None)
        self.fake.expires.pop(self.name, None)


class FakeRedis:
    """
    In-memory stand-in for redis.asyncio.Redis (decode_responses=True).

    Set `fail_commands` to command names (e.g. {"set"}) to make them
    raise redis.ConnectionError.
    """

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}
        self.expires: Dict[str, float] = {}
        self.streams: Dict[str, List[Dict[str, Any]]] = {}
        self.published: List[tuple] = []
        self.fail_commands = set()
        self.closed = False
        self._ids = itertools.count(1)

    def _check(self, command: str):
        if command in self.fail_commands:
            raise redis.ConnectionError(f"simulated failure on {command}")

    def _purge(self, key: str):
        deadline = self.expires.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.expires.pop(key, None)

    async def ping(self):
        self._check("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        self._purge(key)
        return self.data.get(key)

    async def set(self, key: str, value, nx: bool = False, px: Optional[int] = None, ex: Optional[int] = None):
        self._check("set")
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = value if isinstance(value, str) else str(value)
        self.expires.pop(key, None)
        if px is not None:
            self.expires[key] = time.monotonic() + px / 1000
        elif ex is not None:
            self.expires[key] = time.monotonic() + ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None or self.lists.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None):
        self._check("scan")
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def lpush(self, key: str, *values: str) -> int:
        self._check("lpush")
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        self._check("lrange")
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def publish(self, channel: str, message: str) -> int:
        self._check("publish")
        self.published.append((channel, message))
        return 0

    async def xadd(self, name: str, fields: Dict[str, Any], maxlen: Optional[int] = None, approximate: bool = True):
        self._check("xadd")
        entries = self.streams.setdefault(name, [])
        entries.append(dict(fields))
        if maxlen is not None and len(entries) > maxlen:
            del entries[:len(entries) - maxlen]
        return f"{next(self._ids)}-0"

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def lock(self, name: str, timeout: Optional[float] = None, sleep: float = 0.1, **kwargs) -> FakeLock:
        return FakeLock(self, name, timeout=timeout, sleep=sleep, **kwargs)

    async def aclose(self):
        self.closed = True

    # Test helpers

    def outcomes(self, stream: str = "trade-outcomes") -> List[Dict[str, Any]]:
        """Decoded outcome payloads appended to a stream."""
        return [json.loads(entry["payload"]) for entry in self.streams.get(stream, [])]


class DummySubscriptions:
    """Records tick subscription requests."""

    def __init__(self):
        self.calls = []

    async def ensure_subscribed(self, exchange, exchange_type, scrip_code, company_name):
        self.calls.append(("tick", exchange, exchange_type, scrip_code))
        return True

    async def ensure_oi_subscribed(self, exchange, exchange_type, scrip_code, company_name):
        self.calls.append(("oi", exchange, exchange_type, scrip_code))
        return True

    async def close(self):
        return None


# ==================== FIXTURES ====================

@pytest.fixture
def settings() -> Settings:
    """Settings with defaults, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock(MARKET_OPEN)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def subscriptions() -> DummySubscriptions:
    return DummySubscriptions()


@pytest.fixture
def services(fake_redis, clock, settings, subscriptions):
    """Trade services wired around the Redis double and virtual clock."""
    return build_trade_services(fake_redis, clock=clock, settings=settings, subscriptions=subscriptions)


@pytest.fixture
def set_price(fake_redis):
    """Write an LTP into the price cache."""
    def _set(scrip_code: str, price: float, exchange: str = "N"):
        fake_redis.data[f"price:{exchange}:{scrip_code}"] = str(price)
    return _set


@pytest.fixture
def make_request():
    """Build an open-trade request with the classic 75-unit option setup."""
    def _make(**overrides) -> StrategyTradeRequest:
        fields = {
            "scrip_code": "52431",
            "instrument_symbol": "NIFTY 24500 CE",
            "instrument_type": "OPTION",
            "quantity": 75,
            "lots": 3,
            "lot_size": 25,
            "entry_price": 100.0,
            "sl": 90.0,
            "t1": 110.0,
            "t2": 120.0,
            "t3": 130.0,
            "t4": 140.0,
            "strategy": "FUDKII",
            "exchange": "N",
            "direction": "BULLISH",
        }
        fields.update(overrides)
        return StrategyTradeRequest(**fields)
    return _make
