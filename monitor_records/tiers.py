"""
分辨率层级定义

层级转换构成一条严格的链：1m -> 10m -> 20m -> 120m -> 480m，
每一级只消费上一级的输出。
"""

from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType
from typing import Iterator, List, Mapping, Sequence, Tuple

from .errors import ConfigError


@dataclass(frozen=True)
class TierDefinition:
    """一次层级转换：source_tier 的记录汇总为 target_tier 记录"""
    source_tier: str
    target_tier: str
    lookback: timedelta
    min_source_count: int


DEFAULT_TRANSITIONS: Tuple[TierDefinition, ...] = (
    TierDefinition("1m", "10m", timedelta(minutes=10), 10),
    TierDefinition("10m", "20m", timedelta(minutes=20), 2),
    TierDefinition("20m", "120m", timedelta(minutes=120), 6),
    TierDefinition("120m", "480m", timedelta(minutes=480), 4),
)

DEFAULT_RETENTION: Mapping[str, timedelta] = MappingProxyType({
    "1m": timedelta(hours=1),
    "10m": timedelta(hours=12),
    "20m": timedelta(hours=24),
    "120m": timedelta(days=7),
    "480m": timedelta(days=30),
})


class TierRegistry:
    """不可变的层级转换表（按从细到粗的顺序迭代）"""

    def __init__(self, transitions: Sequence[TierDefinition] = DEFAULT_TRANSITIONS):
        self._transitions = tuple(transitions)
        self._validate()

    def _validate(self):
        if not self._transitions:
            raise ConfigError("Tier registry needs at least one transition")

        seen = {self._transitions[0].source_tier}
        previous_target = None
        for tier in self._transitions:
            if tier.lookback <= timedelta(0):
                raise ConfigError(f"Tier {tier.target_tier}: lookback must be positive")
            if tier.min_source_count < 1:
                raise ConfigError(f"Tier {tier.target_tier}: min_source_count must be >= 1")
            if previous_target is not None and tier.source_tier != previous_target:
                raise ConfigError(
                    f"Tier {tier.target_tier} consumes {tier.source_tier}, "
                    f"expected output of previous tier {previous_target}"
                )
            if tier.target_tier in seen:
                raise ConfigError(f"Tier {tier.target_tier} appears more than once in the chain")
            seen.add(tier.target_tier)
            previous_target = tier.target_tier

    def __iter__(self) -> Iterator[TierDefinition]:
        return iter(self._transitions)

    def __len__(self) -> int:
        return len(self._transitions)

    @property
    def finest_target(self) -> str:
        """最细的目标层级，每次运行都会重新计算，不做幂等检查"""
        return self._transitions[0].target_tier

    @property
    def tiers(self) -> List[str]:
        """所有层级（从细到粗）"""
        return [self._transitions[0].source_tier] + [t.target_tier for t in self._transitions]

    def validate_retention(self, retention: Mapping[str, timedelta]):
        """检查每个层级都配置了正数保留窗口"""
        for tier in self.tiers:
            window = retention.get(tier)
            if window is None:
                raise ConfigError(f"No retention window configured for tier {tier}")
            if window <= timedelta(0):
                raise ConfigError(f"Retention window for tier {tier} must be positive")
