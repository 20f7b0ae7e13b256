"""
Monitor Records - 监控记录降采样与保留服务

负责：
- 将 1m 原始样本逐级汇总为 10m / 20m / 120m / 480m 记录
- 按层级保留窗口删除过期记录
- 提供 RecordManager 供外部调度器调用
"""

from .manager import RecordManager
from .store import RecordStore, SQLiteRecordStore

__version__ = "1.0.0"
__all__ = ["RecordManager", "RecordStore", "SQLiteRecordStore"]
