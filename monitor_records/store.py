"""
记录存储抽象层

RecordStore 定义汇总 / 保留任务依赖的存储接口；
SQLiteRecordStore 封装 SQLite 实现，每个事务一个连接。
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, TypeVar

from .errors import RecordDeleteError, RecordSaveError, StoreQueryError, TransactionAbortError
from .models import ACTIVE_STATUS, CONTAINER, HOST, MonitoredEntity, StatRecord, parse_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 固定宽度的 UTC 时间格式，字符串比较即时间比较
TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

TABLES = {
    HOST: "host_stats",
    CONTAINER: "container_stats",
}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS host_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    created TEXT NOT NULL,
    stats TEXT NOT NULL,
    FOREIGN KEY (entity_id) REFERENCES entities(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS container_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    created TEXT NOT NULL,
    stats TEXT NOT NULL,
    FOREIGN KEY (entity_id) REFERENCES entities(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_host_stats_entity_type_created ON host_stats(entity_id, type, created);
CREATE INDEX IF NOT EXISTS idx_host_stats_type_created ON host_stats(type, created);
CREATE INDEX IF NOT EXISTS idx_container_stats_entity_type_created ON container_stats(entity_id, type, created);
CREATE INDEX IF NOT EXISTS idx_container_stats_type_created ON container_stats(type, created);
"""


def format_ts(value: datetime) -> str:
    """datetime -> 存储格式（无时区的视为 UTC）"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TS_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TS_FORMAT).replace(tzinfo=timezone.utc)


def _table(category: str) -> str:
    try:
        return TABLES[category]
    except KeyError:
        raise ValueError(f"Unknown record category: {category}") from None


class RecordStore(Protocol):
    """汇总 / 保留任务使用的存储接口"""

    def list_active_entities(self) -> List[MonitoredEntity]: ...

    def find_records(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> List[StatRecord]: ...

    def find_first_record(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> Optional[StatRecord]: ...

    def find_expired_records(
        self, category: str, tier: str, created_before: datetime
    ) -> List[StatRecord]: ...

    def save(self, record: StatRecord) -> StatRecord: ...

    def delete(self, record: StatRecord) -> None: ...

    def run_in_transaction(self, fn: Callable[["RecordStore"], T]) -> T: ...


class SQLiteTransaction:
    """绑定到单个连接（单个事务）的存储视图"""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreQueryError(f"Query failed: {e}") from e

    @staticmethod
    def _to_record(category: str, row: sqlite3.Row) -> StatRecord:
        return StatRecord(
            id=row["id"],
            entity_id=row["entity_id"],
            category=category,
            tier=row["type"],
            created_at=parse_ts(row["created"]),
            payload=parse_payload(category, row["stats"]),
        )

    def list_active_entities(self) -> List[MonitoredEntity]:
        rows = self._query(
            "SELECT id, name, status FROM entities WHERE status = ? ORDER BY id",
            (ACTIVE_STATUS,),
        )
        return [MonitoredEntity(**dict(row)) for row in rows]

    def find_records(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> List[StatRecord]:
        rows = self._query(f"""
            SELECT id, entity_id, type, created, stats
            FROM {_table(category)}
            WHERE entity_id = ? AND type = ? AND created > ?
            ORDER BY created ASC
        """, (entity_id, tier, format_ts(created_after)))
        return [self._to_record(category, row) for row in rows]

    def find_first_record(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> Optional[StatRecord]:
        rows = self._query(f"""
            SELECT id, entity_id, type, created, stats
            FROM {_table(category)}
            WHERE entity_id = ? AND type = ? AND created > ?
            ORDER BY created ASC
            LIMIT 1
        """, (entity_id, tier, format_ts(created_after)))
        return self._to_record(category, rows[0]) if rows else None

    def find_expired_records(
        self, category: str, tier: str, created_before: datetime
    ) -> List[StatRecord]:
        rows = self._query(f"""
            SELECT id, entity_id, type, created, stats
            FROM {_table(category)}
            WHERE type = ? AND created < ?
            ORDER BY created ASC
        """, (tier, format_ts(created_before)))
        return [self._to_record(category, row) for row in rows]

    def save(self, record: StatRecord) -> StatRecord:
        """写入记录，返回带 ID 的新记录"""
        try:
            cursor = self.conn.execute(f"""
                INSERT INTO {_table(record.category)} (entity_id, type, created, stats)
                VALUES (?, ?, ?, ?)
            """, (record.entity_id, record.tier, format_ts(record.created_at), record.stats_json()))
        except sqlite3.Error as e:
            raise RecordSaveError(f"Failed to save {record.tier} {record.category} record: {e}") from e
        return record.model_copy(update={"id": cursor.lastrowid})

    def delete(self, record: StatRecord) -> None:
        if record.id is None:
            raise RecordDeleteError("Cannot delete a record without id")
        try:
            cursor = self.conn.execute(
                f"DELETE FROM {_table(record.category)} WHERE id = ?", (record.id,)
            )
        except sqlite3.Error as e:
            raise RecordDeleteError(f"Failed to delete record {record.id}: {e}") from e
        if cursor.rowcount == 0:
            raise RecordDeleteError(f"Record {record.id} not found in {_table(record.category)}")

    def run_in_transaction(self, fn: Callable[["SQLiteTransaction"], T]) -> T:
        # 已在事务中，直接执行
        return fn(self)


class SQLiteRecordStore:
    """SQLite 记录存储"""

    def __init__(self, db_path: str, timeout: int = 30):
        """
        初始化数据库

        Args:
            db_path: 数据库文件路径（":memory:" 不适用，每个事务都会新建连接）
            timeout: 等待写锁的秒数
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

        # 确保目录存在
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def get_conn(self):
        """
        获取数据库连接（上下文管理器），整个 with 块是一个事务

        使用方式：
            with store.get_conn() as conn:
                cursor = conn.execute("SELECT ...")
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        # 启用外键约束（级联删除实体的记录）
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self):
        """创建表和索引（幂等）"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        try:
            conn.executescript(SCHEMA_SQL)
        finally:
            conn.close()
        logger.info(f"Database schema ready: {self.db_path}")

    def run_in_transaction(self, fn: Callable[[SQLiteTransaction], T]) -> T:
        """
        在单个事务中执行 fn

        fn 抛出任何异常或提交失败时回滚，并抛出 TransactionAbortError。
        """
        try:
            with self.get_conn() as conn:
                return fn(SQLiteTransaction(conn))
        except Exception as e:
            raise TransactionAbortError(f"Transaction rolled back: {e}") from e

    # =========================================================================
    # 单条操作（各自一个事务）
    # =========================================================================

    def list_active_entities(self) -> List[MonitoredEntity]:
        with self.get_conn() as conn:
            return SQLiteTransaction(conn).list_active_entities()

    def find_records(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> List[StatRecord]:
        with self.get_conn() as conn:
            return SQLiteTransaction(conn).find_records(category, entity_id, tier, created_after)

    def find_first_record(
        self, category: str, entity_id: int, tier: str, created_after: datetime
    ) -> Optional[StatRecord]:
        with self.get_conn() as conn:
            return SQLiteTransaction(conn).find_first_record(category, entity_id, tier, created_after)

    def find_expired_records(
        self, category: str, tier: str, created_before: datetime
    ) -> List[StatRecord]:
        with self.get_conn() as conn:
            return SQLiteTransaction(conn).find_expired_records(category, tier, created_before)

    def save(self, record: StatRecord) -> StatRecord:
        with self.get_conn() as conn:
            return SQLiteTransaction(conn).save(record)

    def delete(self, record: StatRecord) -> None:
        with self.get_conn() as conn:
            SQLiteTransaction(conn).delete(record)

    # =========================================================================
    # 实体操作（供采集子系统和测试使用）
    # =========================================================================

    def create_entity(self, name: str, status: str = ACTIVE_STATUS) -> int:
        """
        创建被监控实体

        Returns:
            新创建的实体 ID
        """
        with self.get_conn() as conn:
            cursor = conn.execute(
                "INSERT INTO entities (name, status) VALUES (?, ?)", (name, status)
            )
            return cursor.lastrowid

    def set_entity_status(self, entity_id: int, status: str) -> bool:
        with self.get_conn() as conn:
            cursor = conn.execute(
                "UPDATE entities SET status = ? WHERE id = ?", (status, entity_id)
            )
            return cursor.rowcount > 0

    def delete_entity(self, entity_id: int) -> bool:
        """删除实体（级联删除其所有记录）"""
        with self.get_conn() as conn:
            cursor = conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
            return cursor.rowcount > 0

    def count_records(
        self,
        category: str,
        tier: Optional[str] = None,
        entity_id: Optional[int] = None,
    ) -> int:
        """统计记录数"""
        conditions = []
        params: List[Any] = []
        if tier is not None:
            conditions.append("type = ?")
            params.append(tier)
        if entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self.get_conn() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS n FROM {_table(category)} {where}", params
            ).fetchone()
            return row["n"]
