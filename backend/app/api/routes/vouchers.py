"""
券路由模块

- 余额汇总
- 可用券数量（可按餐段过滤）
- 餐段截单信息和营业时间
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from app.api.deps import ConfigDep, CurrentUser, SessionDep
from app.api.errors import NotFound
from app.api.schemas import (
    ApiEnvelope,
    CutoffData,
    OperatingHoursData,
    VoucherAvailabilityData,
    VoucherBalanceData,
)
from app.crud.vouchers import check_voucher_availability, get_voucher_balance_summary
from app.enums import MealWindow
from app.models import Kitchen
from app.services.cutoff import check_cutoff, get_current_meal_window, is_within_operating_hours

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.get("/balance", response_model=ApiEnvelope)
def get_balance(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    """
    券余额汇总

    请求路径: GET /api/v1/vouchers/balance
    """
    summary = get_voucher_balance_summary(session=session, user_id=current_user.id)
    return ApiEnvelope(data=VoucherBalanceData(**summary))


@router.get("/available", response_model=ApiEnvelope)
def get_available(
    session: SessionDep,
    current_user: CurrentUser,
    meal_window: MealWindow | None = None,
    count: int = Query(default=1, ge=1, le=10),  # 打算使用的券数
) -> ApiEnvelope:
    """
    可用券数量（与核销使用相同的筛选条件）

    请求路径: GET /api/v1/vouchers/available?meal_window=LUNCH&count=1
    """
    availability = check_voucher_availability(
        session=session, user_id=current_user.id, count=count, meal_window=meal_window
    )
    return ApiEnvelope(
        data=VoucherAvailabilityData(
            meal_window=meal_window,
            available=availability.available,
            requested=availability.requested,
            has_enough=availability.has_enough,
        )
    )


@router.get("/cutoff", response_model=ApiEnvelope)
def get_cutoff(
    session: SessionDep,
    _: CurrentUser,
    config: ConfigDep,
    meal_window: str | None = None,
    kitchen_id: int | None = None,
) -> ApiEnvelope:
    """
    餐段截单信息 + 营业时间

    不传 meal_window 时返回当前可下单餐段的截单信息；未知餐段按已截单返回，
    不带营业时间。传 kitchen_id 时使用该厨房的截单 / 营业时间。

    请求路径: GET /api/v1/vouchers/cutoff?meal_window=LUNCH&kitchen_id=1
    """
    kitchen = None
    if kitchen_id is not None:
        kitchen = session.get(Kitchen, kitchen_id)
        if kitchen is None:
            raise NotFound("Kitchen not found")

    if meal_window:
        info = check_cutoff(meal_window.upper(), config=config, kitchen=kitchen)
    elif kitchen is not None:
        current = get_current_meal_window(config=config).current_window
        info = check_cutoff(current or MealWindow.DINNER, config=config, kitchen=kitchen)
    else:
        info = get_current_meal_window(config=config).cutoff_info

    operating_hours = None
    if info.meal_window in MealWindow.__members__:
        hours = is_within_operating_hours(info.meal_window, config=config, kitchen=kitchen)
        operating_hours = OperatingHoursData(
            is_within_operating_hours=hours.is_within_operating_hours,
            start_time=hours.start_time,
            end_time=hours.end_time,
            message=hours.message,
        )
    return ApiEnvelope(
        data=CutoffData(
            meal_window=info.meal_window,
            is_past_cutoff=info.is_past_cutoff,
            cutoff_time=info.cutoff_time,
            current_time=info.current_time,
            message=info.message,
            operating_hours=operating_hours,
        )
    )
