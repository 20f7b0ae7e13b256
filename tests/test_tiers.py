"""
测试层级表校验
"""

from datetime import timedelta

import pytest

from monitor_records.errors import ConfigError
from monitor_records.tiers import DEFAULT_RETENTION, TierDefinition, TierRegistry


class TestTierRegistry:

    def test_default_chain(self):
        registry = TierRegistry()

        assert registry.tiers == ["1m", "10m", "20m", "120m", "480m"]
        assert registry.finest_target == "10m"
        assert len(registry) == 4
        assert [t.min_source_count for t in registry] == [10, 2, 6, 4]

    def test_default_retention_covers_all_tiers(self):
        TierRegistry().validate_retention(DEFAULT_RETENTION)

    def test_broken_chain_rejected(self):
        """测试：某一级不消费上一级的输出"""
        with pytest.raises(ConfigError, match="expected output"):
            TierRegistry([
                TierDefinition("1m", "10m", timedelta(minutes=10), 10),
                TierDefinition("1m", "20m", timedelta(minutes=20), 2),
            ])

    def test_cycle_rejected(self):
        with pytest.raises(ConfigError, match="more than once"):
            TierRegistry([
                TierDefinition("1m", "10m", timedelta(minutes=10), 10),
                TierDefinition("10m", "1m", timedelta(minutes=20), 2),
            ])

    @pytest.mark.parametrize("lookback,count", [
        (timedelta(0), 1),
        (timedelta(minutes=10), 0),
    ])
    def test_invalid_values_rejected(self, lookback, count):
        with pytest.raises(ConfigError):
            TierRegistry([TierDefinition("1m", "10m", lookback, count)])

    def test_empty_registry_rejected(self):
        with pytest.raises(ConfigError):
            TierRegistry([])

    def test_missing_retention_rejected(self):
        retention = dict(DEFAULT_RETENTION)
        del retention["480m"]

        with pytest.raises(ConfigError, match="480m"):
            TierRegistry().validate_retention(retention)

    def test_non_positive_retention_rejected(self):
        retention = dict(DEFAULT_RETENTION, **{"1m": timedelta(0)})

        with pytest.raises(ConfigError):
            TierRegistry().validate_retention(retention)
