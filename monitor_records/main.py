"""
主程序入口

启动两个并发任务：
1. 层级汇总（每个最细层级周期一次，默认每分钟）
2. 过期记录清理（默认每小时）
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .config import AppConfig, get_config, load_config
from .errors import RecordsError
from .manager import RecordManager
from .store import SQLiteRecordStore

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig):
    """配置日志"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # 如果配置了文件日志
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)


def acquire_single_instance_lock(lock_path: Path):
    """
    防止同一数据库上启动多个实例（多实例会重复生成 10m 记录）。

    通过文件锁实现：同一路径下只能有一个进程持锁。
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")

    try:
        if os.name == "nt":
            import msvcrt  # type: ignore

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl  # type: ignore

            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise RuntimeError(f"Another monitor-records instance is already running (lock: {lock_path})") from e

    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()).encode("utf-8"))
    handle.flush()
    return handle


def seconds_until_next(interval: int, now: Optional[datetime] = None) -> float:
    """距离下一个 interval 整倍数时刻的秒数（例如 60 -> 下一个整分钟）"""
    now = now or datetime.now(timezone.utc)
    elapsed = now.timestamp() % interval
    return interval - elapsed


async def run_rollup_loop(manager: RecordManager, interval: int):
    """
    运行层级汇总循环

    对齐到 interval 边界执行，单次失败不影响下一次。
    """
    logger.info(f"Starting rollup loop (interval={interval}s)")

    while True:
        try:
            await asyncio.sleep(seconds_until_next(interval))
            await asyncio.to_thread(manager.run_rollup)
        except asyncio.CancelledError:
            logger.info("Rollup loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Rollup error: {e}", exc_info=True)


async def run_retention_loop(manager: RecordManager, interval: int):
    """运行过期记录清理循环"""
    logger.info(f"Starting retention loop (interval={interval}s)")

    while True:
        try:
            await asyncio.sleep(seconds_until_next(interval))
            await asyncio.to_thread(manager.run_retention)
        except asyncio.CancelledError:
            logger.info("Retention loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Retention error: {e}", exc_info=True)


def open_store(config: AppConfig) -> SQLiteRecordStore:
    store = SQLiteRecordStore(config.database.path, timeout=config.database.timeout)
    store.init_schema()
    return store


async def main(config: Optional[AppConfig] = None):
    """主函数：启动所有任务"""
    config = config or get_config()
    setup_logging(config)
    logger.info("=" * 60)
    logger.info(f"Monitor Records v{__version__}")
    logger.info("=" * 60)
    logger.info(f"Database: {config.database.path}")

    # 单实例锁：避免重复启动
    db_path = Path(config.database.path)
    try:
        lock_handle = acquire_single_instance_lock(db_path.parent / "monitor-records.lock")
    except RuntimeError as e:
        logger.error(str(e))
        return

    try:
        manager = RecordManager.from_config(config, open_store(config))
        logger.info(f"Tiers: {' -> '.join(manager.registry.tiers)}")

        await asyncio.gather(
            run_rollup_loop(manager, config.rollup.interval_seconds),
            run_retention_loop(manager, config.retention.interval_seconds),
        )
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    finally:
        lock_handle.close()


def cli(argv=None):
    """命令行入口"""
    parser = argparse.ArgumentParser(prog="monitor-records", description="监控记录汇总与清理")
    parser.add_argument("--config", help="配置文件路径（默认 MONITOR_RECORDS_CONFIG_PATH 或 config.yaml）")
    parser.add_argument(
        "--once",
        choices=["rollup", "retention"],
        help="只执行一次指定任务后退出",
    )
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.once:
        setup_logging(config)
        try:
            manager = RecordManager.from_config(config, open_store(config))
            if args.once == "rollup":
                print(manager.run_rollup())
            else:
                print(manager.run_retention())
        except RecordsError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
