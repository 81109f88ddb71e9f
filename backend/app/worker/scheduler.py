"""
定时任务调度器

按业务配置中的 lunch_cron_time / dinner_cron_time（业务时区）触发自动下单。
触发时间在调度器启动时读取，修改后需要重启调度器。
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from app.enums import MealWindow
from app.services.config_service import get_config_provider, parse_hhmm
from app.worker.tasks import run_auto_orders

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_scheduler() -> BlockingScheduler:
    config = get_config_provider().get()
    scheduler = BlockingScheduler(timezone=config.tz)
    for window in MealWindow:
        at = parse_hhmm(config.auto_order.cron_time_for(window))
        scheduler.add_job(
            run_auto_orders,
            CronTrigger(hour=at.hour, minute=at.minute, timezone=config.tz),
            args=[window],
            id=f"auto_order_{window.value.lower()}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Auto-order %s job scheduled at %s %s", window.value, at.strftime("%H:%M"), config.timezone)
    return scheduler


def main() -> None:
    scheduler = build_scheduler()
    logger.info("Scheduler started.")
    scheduler.start()


if __name__ == "__main__":
    main()
