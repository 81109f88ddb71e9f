"""
应用启动前检查脚本

API 和调度器启动前等待依赖就绪：
1. 数据库可连接（tenacity 重试，最多 5 分钟）
2. Redis 可连接（通知 Stream、自动下单锁依赖它）
3. 业务配置文件合法（截单时间格式错误时直接失败，不带着错误配置启动）

使用方式：
    python -m app.backend_pre_start
"""
import logging

from sqlalchemy import Engine
from sqlmodel import Session
from tenacity import (
    after_log,
    before_log,
    retry,
    stop_after_attempt,
    wait_fixed,
)

from app.core.db import engine, init_db
from app.core.redis import get_redis
from app.services.config_service import get_config_provider

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 300 次，每秒一次
wait_seconds = 1

_retry = retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)


@_retry
def wait_for_db(db_engine: Engine) -> None:
    """执行一次连接检查，失败由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            init_db(session)
    except Exception as e:
        logger.error(e)
        raise e


@_retry
def wait_for_redis() -> None:
    try:
        get_redis().ping()
    except Exception as e:
        logger.error(e)
        raise e


def main() -> None:
    logger.info("Initializing service")
    wait_for_db(engine)
    wait_for_redis()
    config = get_config_provider().refresh()
    logger.info(
        "Business config loaded: timezone=%s auto_order.enabled=%s",
        config.timezone,
        config.auto_order.enabled,
    )
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
