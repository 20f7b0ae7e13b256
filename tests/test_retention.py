"""
测试过期记录清理
"""

from datetime import timedelta

import pytest

from monitor_records.errors import RecordDeleteError, StoreQueryError, TransactionAbortError
from monitor_records.manager import RecordManager
from monitor_records.models import CATEGORIES, CONTAINER, HOST
from monitor_records.tiers import DEFAULT_RETENTION

from .conftest import NOW

ONE_SECOND = timedelta(seconds=1)


@pytest.fixture
def expiring_records(store, entity_id, add_host, add_containers):
    """每个层级、每种类别各写入一条刚过期和一条即将过期的记录"""
    for tier, window in DEFAULT_RETENTION.items():
        for created_at in (NOW - window - ONE_SECOND, NOW - window + ONE_SECOND):
            add_host(entity_id, tier, created_at, cpu=1.0)
            add_containers(entity_id, tier, created_at, [{"name": "web"}])


class TestRetention:
    """保留窗口"""

    def test_retention_boundary(self, store, manager, expiring_records):
        """测试：now - retention - 1s 删除，now - retention + 1s 保留"""
        summary = manager.run_retention()

        for tier in DEFAULT_RETENTION:
            assert summary.deleted[tier] == 2
            for category in CATEGORIES:
                assert store.count_records(category, tier) == 1
        assert summary.total == 10

    def test_survivor_is_the_newer_record(self, store, manager, entity_id, expiring_records):
        """测试：保留下来的是较新的记录"""
        manager.run_retention()

        for tier, window in DEFAULT_RETENTION.items():
            [record] = store.find_records(HOST, entity_id, tier, NOW - window - timedelta(hours=1))
            assert record.created_at == NOW - window + ONE_SECOND

    def test_windows_are_per_tier(self, store, manager, entity_id, add_host):
        """测试：同样 2 小时前的记录，1m 删除，10m 保留"""
        two_hours_ago = NOW - timedelta(hours=2)
        add_host(entity_id, "1m", two_hours_ago, cpu=1.0)
        add_host(entity_id, "10m", two_hours_ago, cpu=1.0)

        manager.run_retention()

        assert store.count_records(HOST, "1m") == 0
        assert store.count_records(HOST, "10m") == 1

    def test_nothing_to_delete(self, store, manager, entity_id, add_host):
        add_host(entity_id, "1m", NOW, cpu=1.0)

        summary = manager.run_retention()

        assert summary.total == 0
        assert store.count_records(HOST, "1m") == 1

    def test_all_entities_included(self, store, manager, entity_id, add_host):
        """测试：清理不区分实体状态"""
        paused_id = store.create_entity("srv-paused", status="paused")
        add_host(paused_id, "1m", NOW - timedelta(hours=3), cpu=1.0)

        manager.run_retention()

        assert store.count_records(HOST, "1m", entity_id=paused_id) == 0


class TestRetentionFailures:
    """清理故障"""

    def test_delete_failure_rolls_back(self, store, faulty_store, entity_id, add_host, caplog):
        """测试：任一删除失败时整次清理回滚"""
        for hours in (2, 3, 4):
            add_host(entity_id, "1m", NOW - timedelta(hours=hours), cpu=1.0)

        def overrides(tx):
            calls = []

            def delete(record):
                calls.append(record.id)
                if len(calls) == 2:
                    raise RecordDeleteError("locked")
                tx.delete(record)
            return {"delete": delete}

        manager = RecordManager(faulty_store(overrides), clock=lambda: NOW)

        with pytest.raises(TransactionAbortError) as exc_info:
            manager.run_retention()

        assert isinstance(exc_info.value.__cause__, RecordDeleteError)
        assert store.count_records(HOST, "1m") == 3
        assert "locked" in caplog.text

    def test_query_failure_aborts(self, store, faulty_store, entity_id, add_host):
        add_host(entity_id, "1m", NOW - timedelta(hours=2), cpu=1.0)

        def overrides(tx):
            def find_expired_records(category, tier, created_before):
                if category == CONTAINER:
                    raise StoreQueryError("no such table")
                return tx.find_expired_records(category, tier, created_before)
            return {"find_expired_records": find_expired_records}

        manager = RecordManager(faulty_store(overrides), clock=lambda: NOW)

        with pytest.raises(TransactionAbortError):
            manager.run_retention()

        assert store.count_records(HOST, "1m") == 1
