"""
应用配置模块

使用 Pydantic Settings 管理进程级环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

注意：截单时间、取消规则、自动下单策略等业务配置不在这里，
见 app.services.config_service（可刷新的不可变快照）。
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from typing import Literal

from pydantic import (
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    API_V1_STR: str = "/api/v1"  # API 版本前缀
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（与外部认证服务共享）
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    PROJECT_NAME: str = "Meal Voucher Backend"
    SENTRY_DSN: HttpUrl | None = None

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（通知队列 + 自动下单分布式锁）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # 通知投递：核心只负责写入 Redis Stream，由外部 worker 负责模板渲染和推送
    NOTIFICATION_STREAM: str = "notifications"

    # 业务时区：截单时间按这个时区的本地时间比较，而不是服务器时区
    BUSINESS_TIMEZONE: str = "Asia/Kolkata"
    # 业务配置文件（截单时间、取消规则、自动下单），为空时使用内置默认值
    BUSINESS_CONFIG_PATH: str | None = None

    # 支付结果回调的共享密钥（Authorization 头），为空时不校验
    PAYMENT_WEBHOOK_SECRET: str | None = None

    # 自动下单批处理锁的过期时间（秒）
    AUTO_ORDER_LOCK_TTL_SECONDS: int = 60 * 30

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
