"""
快照平均计算

把同一层级的多条快照归约为一条平均快照：
- 主机快照：数值字段取算术平均；temperatures 只按上报了温度的记录数平均；
  extraFilesystems 按记录总数平均
- 容器快照：按容器 name 汇总，统一除以记录总数

所有结果保留两位小数。
"""

import math
from functools import reduce
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Sequence

from .models import CONTAINER, HOST, ContainerStats, FsStats, HostSnapshot, Payload, StatRecord

HOST_NUMERIC_FIELDS = (
    "cpu", "mem", "mem_used", "mem_pct", "mem_buff_cache",
    "swap", "swap_used",
    "disk_total", "disk_used", "disk_pct", "disk_read_ps", "disk_write_ps",
    "network_sent", "network_recv",
)
FS_FIELDS = ("disk_total", "disk_used", "disk_read_ps", "disk_write_ps")
CONTAINER_NUMERIC_FIELDS = ("cpu", "mem", "network_sent", "network_recv")


def two_decimals(value: float) -> float:
    """保留两位小数（.5 远离零进位，与采集端前端显示一致）"""
    return math.copysign(math.floor(abs(value) * 100 + 0.5), value) / 100


class _HostSums:
    """主机快照的累加器，只在单次归约内部使用"""

    def __init__(self):
        self.count = 0
        self.numeric = dict.fromkeys(HOST_NUMERIC_FIELDS, 0.0)
        # 温度使用独立计数，部分记录可能没有传感器数据
        self.temp_count = 0
        self.temperatures: Dict[str, float] = {}
        self.extra_fs: Dict[str, Dict[str, float]] = {}

    def add(self, snapshot: HostSnapshot) -> "_HostSums":
        self.count += 1
        for field in HOST_NUMERIC_FIELDS:
            self.numeric[field] += getattr(snapshot, field)

        if snapshot.temperatures:
            self.temp_count += 1
            for label, value in snapshot.temperatures.items():
                self.temperatures[label] = self.temperatures.get(label, 0.0) + value

        if snapshot.extra_filesystems:
            for mount, fs in snapshot.extra_filesystems.items():
                sums = self.extra_fs.setdefault(mount, dict.fromkeys(FS_FIELDS, 0.0))
                for field in FS_FIELDS:
                    sums[field] += getattr(fs, field)
        return self

    def result(self) -> HostSnapshot:
        values = {field: two_decimals(total / self.count) for field, total in self.numeric.items()}

        if self.temperatures:
            values["temperatures"] = {
                label: two_decimals(total / self.temp_count)
                for label, total in self.temperatures.items()
            }

        if self.extra_fs:
            values["extra_filesystems"] = {
                mount: FsStats(**{field: two_decimals(total / self.count) for field, total in sums.items()})
                for mount, sums in self.extra_fs.items()
            }

        return HostSnapshot(**values)


def average_host_snapshots(snapshots: Sequence[HostSnapshot]) -> HostSnapshot:
    """
    计算主机快照平均值

    Args:
        snapshots: 非空快照列表

    Returns:
        平均后的快照；没有任何记录上报的稀疏字段不会出现在结果中
    """
    return reduce(_HostSums.add, snapshots, _HostSums()).result()


def average_container_stats(snapshot_sets: Sequence[Sequence[ContainerStats]]) -> List[ContainerStats]:
    """
    计算容器快照平均值

    某个容器只出现在部分记录中时，仍然除以记录总数。
    输出顺序为容器首次出现的顺序。
    """
    count = len(snapshot_sets)
    sums: Dict[str, Dict[str, float]] = {}

    for containers in snapshot_sets:
        for stat in containers:
            entry = sums.setdefault(stat.name, dict.fromkeys(CONTAINER_NUMERIC_FIELDS, 0.0))
            for field in CONTAINER_NUMERIC_FIELDS:
                entry[field] += getattr(stat, field)

    return [
        ContainerStats(name=name, **{field: two_decimals(total / count) for field, total in entry.items()})
        for name, entry in sums.items()
    ]


def average_host_records(records: Sequence[StatRecord]) -> HostSnapshot:
    return average_host_snapshots([record.payload for record in records])


def average_container_records(records: Sequence[StatRecord]) -> List[ContainerStats]:
    return average_container_stats([record.payload for record in records])


Averager = Callable[[Sequence[StatRecord]], Payload]

# 记录类别 -> 平均函数
AVERAGERS: Mapping[str, Averager] = MappingProxyType({
    HOST: average_host_records,
    CONTAINER: average_container_records,
})
