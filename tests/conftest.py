# tests/conftest.py
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock
import pytest
from storefront.config import Config
from storefront.database.database import Database

class FakeTransaction:
    """conn.transaction() stand-in that records how each block ended"""

    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.rollbacks += 1
        return False

class FakeConnection:
    """asyncpg connection with AsyncMock query methods"""

    def __init__(self):
        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=None)
        self.execute = AsyncMock(return_value="UPDATE 1")
        self.executemany = AsyncMock(return_value=None)
        self.transactions = 0
        self.commits = 0
        self.rollbacks = 0

    def transaction(self):
        return FakeTransaction(self)

class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

def answers(*values):
    """Callable that hands out the given values one per call"""
    remaining = list(values)

    def answer(*args):
        return remaining.pop(0)
    return answer

def raises(exc):
    def answer(*args):
        raise exc
    return answer

def sql_router(routes, default=None):
    """side_effect answering by the first SQL fragment contained in the query.

    A callable answer is called with the query parameters.
    """
    async def route(query, *args):
        for fragment, answer in routes.items():
            if fragment in query:
                return answer(*args) if callable(answer) else answer
        return default
    return route

def calls_matching(mock, fragment):
    """Recorded calls of a query mock whose SQL contains `fragment`"""
    return [c for c in mock.await_args_list if fragment in c.args[0]]

@pytest.fixture
def conn():
    return FakeConnection()

@pytest.fixture
def db(conn):
    database = Database("postgresql://test")
    database.pool = FakePool(conn)
    return database

@pytest.fixture(autouse=True)
def pricing(monkeypatch):
    """Deterministic pricing and wallet limits regardless of the environment"""
    monkeypatch.setattr(Config, "CURRENCY", "SGD")
    monkeypatch.setattr(Config, "TAX_RATE", Decimal("0"))
    monkeypatch.setattr(Config, "SHIPPING_FEE", Decimal("0"))
    monkeypatch.setattr(Config, "TOPUP_MIN", Decimal("1.00"))
    monkeypatch.setattr(Config, "TOPUP_MAX", Decimal("1000.00"))
    monkeypatch.setattr(Config, "CORRELATION_TTL", 600)
    monkeypatch.setattr(Config, "ADMIN_IDS", [99])
    monkeypatch.setattr(Config, "TIMEZONE", "Asia/Singapore")
