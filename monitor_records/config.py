"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。

环境变量使用 MONITOR_RECORDS_ 前缀，嵌套字段用双下划线分隔，例如：
    MONITOR_RECORDS_LOGGING__LEVEL=DEBUG
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .tiers import DEFAULT_RETENTION, DEFAULT_TRANSITIONS, TierDefinition


class DatabaseConfig(BaseModel):
    """数据库配置"""
    path: str = "data/records.db"
    timeout: int = 30


class TierConfig(BaseModel):
    """单个层级转换"""
    source: str
    target: str
    lookback_minutes: int = Field(..., gt=0)
    min_source_count: int = Field(..., ge=1)

    def to_definition(self) -> TierDefinition:
        return TierDefinition(
            source_tier=self.source,
            target_tier=self.target,
            lookback=timedelta(minutes=self.lookback_minutes),
            min_source_count=self.min_source_count,
        )


def _default_tiers() -> List[TierConfig]:
    return [
        TierConfig(
            source=t.source_tier,
            target=t.target_tier,
            lookback_minutes=int(t.lookback.total_seconds() // 60),
            min_source_count=t.min_source_count,
        )
        for t in DEFAULT_TRANSITIONS
    ]


def _default_windows() -> Dict[str, int]:
    return {tier: int(window.total_seconds() // 60) for tier, window in DEFAULT_RETENTION.items()}


class RollupConfig(BaseModel):
    """汇总任务配置"""
    interval_seconds: int = Field(60, gt=0)
    padding_seconds: int = Field(60, ge=0)
    tiers: List[TierConfig] = Field(default_factory=_default_tiers)


class RetentionConfig(BaseModel):
    """数据保留策略（层级 -> 保留分钟数）"""
    interval_seconds: int = Field(3600, gt=0)
    windows: Dict[str, int] = Field(default_factory=_default_windows)

    def to_timedeltas(self) -> Dict[str, timedelta]:
        return {tier: timedelta(minutes=minutes) for tier, minutes in self.windows.items()}


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 50
    backup_count: int = 5


class AppConfig(BaseSettings):
    """应用配置（完整配置）"""
    model_config = SettingsConfigDict(
        env_prefix="MONITOR_RECORDS_",
        env_nested_delimiter="__",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    rollup: RollupConfig = Field(default_factory=RollupConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # 环境变量优先于 YAML 文件中的值
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 MONITOR_RECORDS_CONFIG_PATH
    3. 默认路径 config.yaml
    """
    if config_path is None:
        config_path = os.environ.get("MONITOR_RECORDS_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    raw_config = {}

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}

        # 相对路径以配置文件所在目录为基准
        base_dir = config_file.resolve().parent

        def _resolve_path(value: Optional[str]) -> Optional[str]:
            if not value:
                return value
            path = Path(value)
            if path.is_absolute():
                return str(path)
            return str((base_dir / path).resolve())

        if raw_config.get("database", {}).get("path"):
            raw_config["database"]["path"] = _resolve_path(raw_config["database"]["path"])
        if raw_config.get("logging", {}).get("file"):
            raw_config["logging"]["file"] = _resolve_path(raw_config["logging"]["file"])

    # 配置文件不存在时使用默认配置（仍允许环境变量覆盖）
    return AppConfig(**raw_config)


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
