"""
数据模型定义

包括：
- 被监控实体
- 主机快照 / 容器快照（字段名与采集端保持一致）
- 统计记录
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

HOST = "host"
CONTAINER = "container"
CATEGORIES = (HOST, CONTAINER)

RecordCategory = Literal["host", "container"]

ACTIVE_STATUS = "active"


class MonitoredEntity(BaseModel):
    """被监控实体（生命周期由采集子系统管理）"""
    id: int
    name: str = ""
    status: str = ACTIVE_STATUS

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS


# =============================================================================
# 快照负载（序列化时使用别名，保证与采集端 / 前端字段名一致）
# =============================================================================

class FsStats(BaseModel):
    """附加文件系统统计"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    disk_total: float = Field(0.0, alias="diskTotal")
    disk_used: float = Field(0.0, alias="diskUsed")
    disk_read_ps: float = Field(0.0, alias="diskReadPs")
    disk_write_ps: float = Field(0.0, alias="diskWritePs")


class HostSnapshot(BaseModel):
    """主机快照"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    cpu: float = 0.0
    mem: float = 0.0
    mem_used: float = Field(0.0, alias="memUsed")
    mem_pct: float = Field(0.0, alias="memPct")
    mem_buff_cache: float = Field(0.0, alias="memBuffCache")
    swap: float = 0.0
    swap_used: float = Field(0.0, alias="swapUsed")
    disk_total: float = Field(0.0, alias="diskTotal")
    disk_used: float = Field(0.0, alias="diskUsed")
    disk_pct: float = Field(0.0, alias="diskPct")
    disk_read_ps: float = Field(0.0, alias="diskReadPs")
    disk_write_ps: float = Field(0.0, alias="diskWritePs")
    network_sent: float = Field(0.0, alias="networkSent")
    network_recv: float = Field(0.0, alias="networkRecv")

    # 稀疏字段：只有采集端上报时才存在
    temperatures: Optional[Dict[str, float]] = None
    extra_filesystems: Optional[Dict[str, FsStats]] = Field(None, alias="extraFilesystems")


class ContainerStats(BaseModel):
    """单个容器的快照，跨记录按 name 匹配"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    cpu: float = 0.0
    mem: float = 0.0
    network_sent: float = Field(0.0, alias="networkSent")
    network_recv: float = Field(0.0, alias="networkRecv")


Payload = Union[HostSnapshot, List[ContainerStats]]


def parse_payload(category: str, raw: Any) -> Payload:
    """
    按记录类别解析负载

    Args:
        category: host 或 container
        raw: JSON 字符串或已解码的 dict / list
    """
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    if category == HOST:
        return HostSnapshot.model_validate(raw)
    if category == CONTAINER:
        return [ContainerStats.model_validate(item) for item in raw or []]
    raise ValueError(f"Unknown record category: {category}")


def dump_payload(payload: Payload) -> Any:
    """转换为可 JSON 序列化的结构（稀疏字段缺失时不输出）"""
    if isinstance(payload, HostSnapshot):
        return payload.model_dump(by_alias=True, exclude_none=True)
    return [item.model_dump(by_alias=True, exclude_none=True) for item in payload]


class StatRecord(BaseModel):
    """统计记录（创建后不可修改，只能被保留任务删除）"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    entity_id: int
    category: RecordCategory
    tier: str
    created_at: datetime
    payload: Payload

    def stats_json(self) -> str:
        return json.dumps(dump_payload(self.payload), separators=(",", ":"))
