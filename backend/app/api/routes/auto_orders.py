"""
自动下单路由

管理员：
- 手动触发一次批处理（可 dry_run）
- 按批次查看结果日志
- 失败分类统计

顾客：查看自己最近的自动下单失败记录
"""
from __future__ import annotations

from dataclasses import asdict
from datetime import date, timedelta

from fastapi import APIRouter, HTTPException, Query

from app.api.deps import AdminUser, ConfigDep, CurrentUser, SessionDep
from app.api.errors import NotFound
from app.api.schemas import (
    ApiEnvelope,
    AutoOrderLogData,
    AutoOrderOutcomeData,
    AutoOrderRunData,
    AutoOrderRunRequest,
    FailureSummaryRow,
)
from app.crud.auto_order_logs import (
    get_failure_summary,
    get_logs_by_cron_run,
    get_recent_failures_by_user,
)
from app.services.auto_order_service import run_auto_order_batch
from app.services.cutoff import business_now

router = APIRouter(prefix="/admin/auto-orders", tags=["auto-orders"])
customer_router = APIRouter(prefix="/auto-orders", tags=["auto-orders"])


@router.post("/run", response_model=ApiEnvelope)
def run_auto_orders(
    session: SessionDep, _: AdminUser, config: ConfigDep, body: AutoOrderRunRequest
) -> ApiEnvelope:
    """
    手动触发一次自动下单

    请求路径: POST /api/v1/admin/auto-orders/run

    同步执行并返回统计。定时任务走 worker（带分布式锁），这里不加锁，
    用于补跑或 dry_run 预览。
    """
    stats = run_auto_order_batch(
        session=session, meal_window=body.meal_window, config=config, dry_run=body.dry_run
    )
    return ApiEnvelope(
        data=AutoOrderRunData(
            cron_run_id=stats.cron_run_id,
            meal_window=stats.meal_window,
            dry_run=stats.dry_run,
            total=stats.total,
            processed=stats.processed,
            succeeded=stats.succeeded,
            skipped=stats.skipped,
            failed=stats.failed,
            duration_ms=stats.duration_ms,
            outcomes=[AutoOrderOutcomeData(**asdict(o)) for o in stats.outcomes],
        )
    )


@router.get("/runs/{cron_run_id}", response_model=ApiEnvelope)
def get_run_logs(session: SessionDep, _: AdminUser, cron_run_id: str) -> ApiEnvelope:
    """请求路径: GET /api/v1/admin/auto-orders/runs/{cron_run_id}"""
    logs = get_logs_by_cron_run(session=session, cron_run_id=cron_run_id)
    if not logs:
        raise NotFound("Auto-order run not found")
    return ApiEnvelope(
        data=[AutoOrderLogData.model_validate(log, from_attributes=True) for log in logs]
    )


@router.get("/failure-summary", response_model=ApiEnvelope)
def failure_summary(
    session: SessionDep,
    _: AdminUser,
    config: ConfigDep,
    date_from: date | None = Query(default=None),  # 默认最近 7 天（业务时区）
    date_to: date | None = Query(default=None),
) -> ApiEnvelope:
    """
    失败 / 跳过统计（按 失败分类 x 餐段）

    请求路径: GET /api/v1/admin/auto-orders/failure-summary?date_from=2024-01-01&date_to=2024-01-07
    """
    date_to = date_to or business_now(config).date()
    date_from = date_from or date_to - timedelta(days=6)
    if date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")
    rows = get_failure_summary(session=session, date_from=date_from, date_to=date_to)
    return ApiEnvelope(data=[FailureSummaryRow(**row) for row in rows])


@customer_router.get("/failures", response_model=ApiEnvelope)
def my_recent_failures(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=10, ge=1, le=50),
) -> ApiEnvelope:
    """
    当前用户最近的自动下单失败记录（最新在前）

    请求路径: GET /api/v1/auto-orders/failures?limit=10
    """
    logs = get_recent_failures_by_user(session=session, user_id=current_user.id, limit=limit)
    return ApiEnvelope(
        data=[AutoOrderLogData.model_validate(log, from_attributes=True) for log in logs]
    )
