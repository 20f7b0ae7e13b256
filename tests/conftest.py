"""
测试公共 fixture

使用临时 SQLite 数据库和固定时间。
"""

from datetime import datetime, timezone

import pytest

from monitor_records.manager import RecordManager
from monitor_records.models import CONTAINER, HOST, ContainerStats, HostSnapshot, StatRecord
from monitor_records.store import SQLiteRecordStore

NOW = datetime(2026, 1, 20, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store(tmp_path):
    """创建临时测试数据库"""
    store = SQLiteRecordStore(str(tmp_path / "test_records.db"))
    store.init_schema()
    return store


@pytest.fixture
def entity_id(store):
    return store.create_entity("srv-01")


@pytest.fixture
def manager(store):
    return RecordManager(store, clock=lambda: NOW)


@pytest.fixture
def add_host(store):
    """写入一条主机记录：add_host(entity_id, tier, created_at, cpu=..., ...)"""

    def _add(entity_id, tier, created_at, **fields):
        record = StatRecord(
            entity_id=entity_id,
            category=HOST,
            tier=tier,
            created_at=created_at,
            payload=HostSnapshot(**fields),
        )
        return store.save(record)

    return _add


@pytest.fixture
def add_containers(store):
    """写入一条容器记录：add_containers(entity_id, tier, created_at, [{"name": ..., ...}])"""

    def _add(entity_id, tier, created_at, containers):
        record = StatRecord(
            entity_id=entity_id,
            category=CONTAINER,
            tier=tier,
            created_at=created_at,
            payload=[ContainerStats(**c) for c in containers],
        )
        return store.save(record)

    return _add


class TxWrapper:
    """包装事务视图，按需替换某些方法（用于模拟存储故障）"""

    def __init__(self, tx, **overrides):
        self._tx = tx
        self._overrides = overrides

    def __getattr__(self, name):
        if name in self._overrides:
            return self._overrides[name]
        return getattr(self._tx, name)


class FaultyStore:
    """在真实 SQLite 存储上注入故障的存储"""

    def __init__(self, inner, make_overrides):
        self.inner = inner
        self.make_overrides = make_overrides

    def run_in_transaction(self, fn):
        return self.inner.run_in_transaction(
            lambda tx: fn(TxWrapper(tx, **self.make_overrides(tx)))
        )


@pytest.fixture
def faulty_store(store):
    """faulty_store(lambda tx: {"save": ...}) -> 注入故障的存储"""

    def _make(make_overrides):
        return FaultyStore(store, make_overrides)

    return _make
