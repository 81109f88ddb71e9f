"""
定时任务逻辑

自动下单每个餐段执行一次；用 Redis 锁保证同一餐段同一时间只有一个实例在跑。
"""

import argparse
import logging
from uuid import uuid4

import redis
from sqlmodel import Session

from app.core.config import settings
from app.core.db import engine
from app.core.redis import acquire_lock, release_lock
from app.enums import MealWindow
from app.services.auto_order_service import AutoOrderRunStats, run_auto_order_batch
from app.services.config_service import get_config_provider

logger = logging.getLogger(__name__)

AUTO_ORDER_LOCK_KEY = "auto_order:{meal_window}:lock"


def run_auto_orders(meal_window: MealWindow | str, dry_run: bool = False) -> AutoOrderRunStats | None:
    """
    执行一个餐段的自动下单

    每次执行前重新加载业务配置，运行期间修改的截单 / 开关在下一次执行生效。

    Returns:
        本次执行统计；拿不到锁时返回 None
    """
    window = MealWindow(meal_window)
    lock_key = AUTO_ORDER_LOCK_KEY.format(meal_window=window.value)
    lock_value = str(uuid4())
    try:
        acquired = acquire_lock(
            lock_key, lock_value, expire_seconds=settings.AUTO_ORDER_LOCK_TTL_SECONDS
        )
    except redis.RedisError as exc:
        logger.error("Failed to acquire auto-order lock for %s: %s", window.value, exc)
        return None
    if not acquired:
        logger.info("Auto-order %s already running, skip this run.", window.value)
        return None

    try:
        config = get_config_provider().refresh()
        with Session(engine) as session:
            return run_auto_order_batch(
                session=session, meal_window=window, config=config, dry_run=dry_run
            )
    finally:
        release_lock(lock_key, lock_value)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Run the auto-order batch for one meal window")
    parser.add_argument("meal_window", choices=[w.value for w in MealWindow])
    parser.add_argument("--dry-run", action="store_true", help="resolve plans without writing anything")
    args = parser.parse_args()

    stats = run_auto_orders(args.meal_window, dry_run=args.dry_run)
    if stats is None:
        return
    logger.info(
        "Run %s: total=%d processed=%d succeeded=%d skipped=%d failed=%d",
        stats.cron_run_id,
        stats.total,
        stats.processed,
        stats.succeeded,
        stats.skipped,
        stats.failed,
    )


if __name__ == "__main__":
    main()
