"""
FastAPI 应用主入口

负责：
1. 创建 FastAPI 应用实例
2. 初始化 Sentry（非本地环境）
3. 注册全局异常处理器，所有错误统一返回 {"code", "message", "data"} 格式
4. 注册 API 路由

运行方式：
    uvicorn app.main:app --reload  # 开发模式
    fastapi dev app/main.py  # 或使用 FastAPI CLI

自动下单批处理不在 API 进程里跑，见 app.worker.scheduler。
"""
import logging
from typing import Any

import sentry_sdk  # Sentry 错误监控
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError  # 请求验证错误
from fastapi.responses import JSONResponse  # JSON 响应
from fastapi.routing import APIRoute  # 路由类型

from app.api.errors import AppError
from app.api.main import api_router
from app.core.config import settings

logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    """
    自定义 OpenAPI 操作 ID：{tag}-{route_name}

    示例：
        "orders-cancel_order"
    """
    return f"{route.tags[0]}-{route.name}"


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(
        dsn=str(settings.SENTRY_DSN),
        environment=settings.ENVIRONMENT,
        enable_tracing=True,
    )

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
)


def _envelope(status_code: int, code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "data": data},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    业务异常处理器

    券不足、已截单、状态流转不合法、取消被拒等都是可预期的业务结果，只记 INFO。
    """
    logger.info(
        "%s %s -> %s %s", request.method, request.url.path, exc.code, exc.message
    )
    return _envelope(exc.status_code, exc.code, exc.message)


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTP 异常处理器

    detail 为 {"code", "message"} 字典时直接使用，否则错误码 = 状态码 * 1000。
    """
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        return _envelope(exc.status_code, exc.detail["code"], exc.detail["message"])
    return _envelope(exc.status_code, exc.status_code * 1000, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """请求参数校验失败（422），data.errors 带详细字段错误"""
    return _envelope(422, 422000, "Validation error", {"errors": exc.errors()})


# 所有路由都会添加 /api/v1 前缀
app.include_router(api_router, prefix=settings.API_V1_STR)
