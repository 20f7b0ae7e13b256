"""
数据保留策略

删除超过所在层级保留窗口的记录。删除失败会中止并回滚整个事务。
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Mapping, Sequence

from .errors import RecordDeleteError
from .models import CATEGORIES
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class RetentionSummary:
    """一次清理运行的统计（层级 -> 删除条数）"""
    deleted: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.deleted.values())


class RetentionPolicy:
    """按层级保留窗口清理记录"""

    def __init__(self, retention: Mapping[str, timedelta], categories: Sequence[str] = CATEGORIES):
        self.retention = dict(retention)
        self.categories = tuple(categories)

    def run(self, store: RecordStore, now: datetime) -> RetentionSummary:
        """
        执行一次清理（调用方负责包裹在事务中）

        Raises:
            StoreQueryError: 查询失败
            RecordDeleteError: 删除失败
        """
        summary = RetentionSummary()

        for tier, window in self.retention.items():
            cutoff = now - window
            deleted = 0
            for category in self.categories:
                for record in store.find_expired_records(category, tier, cutoff):
                    try:
                        store.delete(record)
                    except RecordDeleteError as e:
                        logger.error(f"Failed to delete {tier} {category} record {record.id}: {e}")
                        raise
                    deleted += 1
            summary.deleted[tier] = deleted

        return summary
