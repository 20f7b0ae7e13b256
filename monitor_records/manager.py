"""
记录管理器

外部调度器的唯一入口：
- run_rollup: 生成粗粒度汇总记录
- run_retention: 删除过期记录

每次运行都在单个存储事务中完成。
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from .config import AppConfig
from .errors import TransactionAbortError
from .retention import RetentionPolicy, RetentionSummary
from .rollup import DEFAULT_PADDING, RollupEngine, RollupSummary
from .store import RecordStore
from .tiers import DEFAULT_RETENTION, TierRegistry

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordManager:
    """持有存储句柄和（不可变的）层级配置"""

    def __init__(
        self,
        store: RecordStore,
        registry: Optional[TierRegistry] = None,
        retention: Optional[Mapping[str, timedelta]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        padding: timedelta = DEFAULT_PADDING,
    ):
        """
        Args:
            store: 记录存储
            registry: 层级转换表，默认 1m -> 10m -> 20m -> 120m -> 480m
            retention: 层级 -> 保留窗口，默认 1h / 12h / 24h / 7d / 30d
            clock: 返回当前 UTC 时间的函数（测试时可注入固定时间）
            padding: 幂等检查的时间余量
        """
        self.store = store
        self.registry = registry or TierRegistry()
        retention = dict(retention if retention is not None else DEFAULT_RETENTION)
        self.registry.validate_retention(retention)

        self.rollup = RollupEngine(self.registry, padding=padding)
        self.retention = RetentionPolicy(retention)
        self._clock = clock or utc_now

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: RecordStore,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "RecordManager":
        """根据应用配置创建"""
        registry = TierRegistry([tier.to_definition() for tier in config.rollup.tiers])
        return cls(
            store,
            registry=registry,
            retention=config.retention.to_timedeltas(),
            clock=clock,
            padding=timedelta(seconds=config.rollup.padding_seconds),
        )

    def run_rollup(self) -> RollupSummary:
        """
        执行一次层级汇总

        Raises:
            TransactionAbortError: 查询失败或提交失败，本次运行无任何写入
        """
        now = self._clock()
        start = time.monotonic()
        try:
            summary = self.store.run_in_transaction(lambda tx: self.rollup.run(tx, now))
        except TransactionAbortError as e:
            logger.error(f"Rollup aborted: {e}")
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Rollup completed in {elapsed_ms:.0f}ms: {summary.entities} entities, "
            f"{summary.created} created, {summary.skipped_existing} existing, "
            f"{summary.skipped_insufficient} insufficient, {summary.failed} failed"
        )
        return summary

    def run_retention(self) -> RetentionSummary:
        """
        执行一次过期记录清理

        Raises:
            TransactionAbortError: 查询或删除失败，本次运行的删除全部回滚
        """
        now = self._clock()
        start = time.monotonic()
        try:
            summary = self.store.run_in_transaction(lambda tx: self.retention.run(tx, now))
        except TransactionAbortError as e:
            logger.error(f"Retention aborted: {e}")
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(f"Retention completed in {elapsed_ms:.0f}ms: deleted {summary.total} records {summary.deleted}")
        return summary
