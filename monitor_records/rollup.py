"""
层级汇总任务

对每个活跃实体、每个层级转换、每种记录类别：
1. 目标层级本周期已有记录 -> 跳过（最细的目标层级除外）
2. 源层级记录数不足 -> 跳过
3. 否则平均源记录并写入一条目标层级记录
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence

from .averaging import AVERAGERS, Averager
from .errors import RecordSaveError
from .models import CATEGORIES, MonitoredEntity, StatRecord
from .store import RecordStore
from .tiers import TierDefinition, TierRegistry

logger = logging.getLogger(__name__)

# 已有目标记录的时间戳可能略晚于周期边界，幂等检查窗口向前放宽
DEFAULT_PADDING = timedelta(minutes=1)


@dataclass
class RollupSummary:
    """一次汇总运行的统计"""
    entities: int = 0
    created: int = 0
    skipped_existing: int = 0
    skipped_insufficient: int = 0
    failed: int = 0


class RollupEngine:
    """按层级链把细粒度记录汇总为粗粒度记录"""

    def __init__(
        self,
        registry: TierRegistry,
        padding: timedelta = DEFAULT_PADDING,
        averagers: Optional[Mapping[str, Averager]] = None,
        categories: Sequence[str] = CATEGORIES,
    ):
        self.registry = registry
        self.padding = padding
        self.averagers = averagers if averagers is not None else AVERAGERS
        self.categories = tuple(categories)

    def run(self, store: RecordStore, now: datetime) -> RollupSummary:
        """
        执行一次汇总（调用方负责包裹在事务中）

        Args:
            store: 事务内的存储视图
            now: 本次运行的基准时间（UTC）

        Raises:
            StoreQueryError: 任一查询失败，整个事务应回滚
        """
        summary = RollupSummary()
        entities = store.list_active_entities()
        summary.entities = len(entities)

        for entity in entities:
            for tier in self.registry:
                for category in self.categories:
                    self._rollup(store, entity, tier, category, now, summary)

        return summary

    def _rollup(
        self,
        store: RecordStore,
        entity: MonitoredEntity,
        tier: TierDefinition,
        category: str,
        now: datetime,
        summary: RollupSummary,
    ):
        # 最细的目标层级每次运行都会生成，源窗口正好等于运行间隔
        if tier.target_tier != self.registry.finest_target:
            existing = store.find_first_record(
                category, entity.id, tier.target_tier, now - tier.lookback - self.padding
            )
            if existing is not None:
                logger.debug(f"Entity {entity.id}: {tier.target_tier} {category} record exists, skipping")
                summary.skipped_existing += 1
                return

        # 源记录与本任务的运行时间无关，不加 padding
        source_records = store.find_records(
            category, entity.id, tier.source_tier, now - tier.lookback
        )
        if len(source_records) < tier.min_source_count:
            logger.debug(
                f"Entity {entity.id}: {len(source_records)}/{tier.min_source_count} "
                f"{tier.source_tier} {category} records, skipping {tier.target_tier}"
            )
            summary.skipped_insufficient += 1
            return

        average = self.averagers[category]
        record = StatRecord(
            entity_id=entity.id,
            category=category,
            tier=tier.target_tier,
            created_at=now,
            payload=average(source_records),
        )

        try:
            store.save(record)
        except RecordSaveError as e:
            logger.error(
                f"Failed to save {tier.target_tier} {category} record for entity {entity.id}: {e}"
            )
            summary.failed += 1
            return

        summary.created += 1
