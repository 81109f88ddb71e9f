"""
Redis 连接模块

Redis 在本服务中只有两个用途：
- 通知 Stream（核心写入，外部 worker 消费并推送）
- 自动下单批处理的分布式锁

使用 @lru_cache 保证全局只有一个客户端实例；redis.Redis 是惰性连接的。
"""
from __future__ import annotations

import logging
from functools import lru_cache

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """获取 Redis 客户端实例（单例）"""
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,  # 自动解码为字符串
        socket_timeout=5,
    )


# 只有持有者（值匹配）才能释放锁，Lua 脚本保证原子性
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def acquire_lock(lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
    """
    获取分布式锁

    Args:
        lock_key: 锁键
        lock_value: 锁值（用于释放时验证）
        expire_seconds: 锁过期时间（秒），进程崩溃时锁会自动过期

    Returns:
        是否获取成功
    """
    return bool(get_redis().set(lock_key, lock_value, ex=expire_seconds, nx=True))


def release_lock(lock_key: str, lock_value: str) -> bool:
    """释放分布式锁（锁值必须匹配）"""
    try:
        return get_redis().eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, lock_value) == 1
    except redis.RedisError as e:
        logger.error(f"Failed to release lock: {e}")
        return False
