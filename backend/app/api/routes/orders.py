"""
订单路由模块

处理订单相关的 API 端点，包括：
- 顾客：下单、查询详情、取消资格预检、取消
- 厨房员工：接单、拒单、推进状态、厨房取消
- 管理员：强制取消

路由只做参数转换，所有业务规则都在 app.services.order_service 中。
"""
from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import AdminUser, ConfigDep, CurrentUser, KitchenStaff, SessionDep
from app.api.errors import NotFound
from app.api.schemas import (
    AdminCancelRequest,
    ApiEnvelope,
    CancelOrderRequest,
    CancellationData,
    CancellationEligibilityData,
    OrderCreateRequest,
    OrderData,
    OrderDetailData,
    OrderReasonRequest,
    OrderStatusEventData,
    OrderStatusUpdateRequest,
)
from app.models import Kitchen, Order
from app.services import order_service
from app.services.cancellation import check_cancellation_eligibility
from app.services.order_service import CancellationOutcome, OrderItemInput
from app.services.order_state import get_timeline

router = APIRouter(prefix="/orders", tags=["orders"])


def _to_order_data(order: Order) -> OrderData:
    return OrderData.model_validate(order, from_attributes=True)


def _to_cancellation_data(outcome: CancellationOutcome) -> CancellationData:
    return CancellationData(
        order=_to_order_data(outcome.order),
        vouchers_restored=outcome.vouchers_restored,
        refund_initiated=outcome.refund_initiated,
        voucher_warning=outcome.voucher_warning,
        message=outcome.message,
    )


@router.post("", response_model=ApiEnvelope)
def place_order(
    session: SessionDep, current_user: CurrentUser, config: ConfigDep, body: OrderCreateRequest
) -> ApiEnvelope:
    """
    下单

    请求路径: POST /api/v1/orders

    Raises:
        AppError: 地址/厨房/菜品校验失败（400001）、已截单（409002）、券不足（409001）
    """
    order = order_service.place_order(
        session=session,
        user=current_user,
        kitchen_id=body.kitchen_id,
        delivery_address_id=body.delivery_address_id,
        menu_type=body.menu_type,
        meal_window=body.meal_window,
        items=[OrderItemInput(menu_item_id=i.menu_item_id, quantity=i.quantity) for i in body.items],
        voucher_count=body.voucher_count,
        payment_method=body.payment_method,
        config=config,
    )
    return ApiEnvelope(data=_to_order_data(order))


@router.get("/{order_id}", response_model=ApiEnvelope)
def get_order(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    订单详情（含状态时间线）

    请求路径: GET /api/v1/orders/{order_id}
    """
    order = order_service.get_order_for_user(session=session, order_id=order_id, user=current_user)
    timeline = [
        OrderStatusEventData.model_validate(event, from_attributes=True)
        for event in get_timeline(session, order.id)
    ]
    return ApiEnvelope(data=OrderDetailData(order=_to_order_data(order), timeline=timeline))


@router.get("/{order_id}/cancellation", response_model=ApiEnvelope)
def get_cancellation_eligibility(
    session: SessionDep, current_user: CurrentUser, config: ConfigDep, order_id: int
) -> ApiEnvelope:
    """
    取消资格预检（不修改订单）

    请求路径: GET /api/v1/orders/{order_id}/cancellation
    """
    order = order_service.get_order(session=session, order_id=order_id)
    if order.user_id != current_user.id:
        raise NotFound("Order not found")
    kitchen = session.get(Kitchen, order.kitchen_id)
    verdict = check_cancellation_eligibility(order, config=config, kitchen=kitchen)
    return ApiEnvelope(
        data=CancellationEligibilityData(
            can_cancel=verdict.can_cancel,
            should_restore_vouchers=verdict.should_restore_vouchers,
            reason=verdict.reason,
            warning=verdict.warning,
            remaining_minutes=verdict.remaining_minutes,
        )
    )


@router.post("/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_order(
    session: SessionDep,
    current_user: CurrentUser,
    config: ConfigDep,
    order_id: int,
    body: CancelOrderRequest | None = None,
) -> ApiEnvelope:
    """
    顾客取消订单

    请求路径: POST /api/v1/orders/{order_id}/cancel

    截单后取消用券订单会成功，但券不退回，message 中带提示。
    """
    outcome = order_service.customer_cancel_order(
        session=session,
        order_id=order_id,
        user=current_user,
        reason=body.reason if body else None,
        config=config,
    )
    return ApiEnvelope(data=_to_cancellation_data(outcome))


@router.post("/{order_id}/accept", response_model=ApiEnvelope)
def accept_order(session: SessionDep, staff: KitchenStaff, order_id: int) -> ApiEnvelope:
    """厨房接单，请求路径: POST /api/v1/orders/{order_id}/accept"""
    order = order_service.accept_order(session=session, order_id=order_id, staff=staff)
    return ApiEnvelope(data=_to_order_data(order))


@router.post("/{order_id}/reject", response_model=ApiEnvelope)
def reject_order(
    session: SessionDep, staff: KitchenStaff, order_id: int, body: OrderReasonRequest
) -> ApiEnvelope:
    """厨房拒单（退券、已支付时发起退款），请求路径: POST /api/v1/orders/{order_id}/reject"""
    outcome = order_service.kitchen_reject_order(
        session=session, order_id=order_id, staff=staff, reason=body.reason
    )
    return ApiEnvelope(data=_to_cancellation_data(outcome))


@router.post("/{order_id}/kitchen-cancel", response_model=ApiEnvelope)
def kitchen_cancel_order(
    session: SessionDep, staff: KitchenStaff, order_id: int, body: OrderReasonRequest
) -> ApiEnvelope:
    """厨房取消已接单 / 备餐中的订单，请求路径: POST /api/v1/orders/{order_id}/kitchen-cancel"""
    outcome = order_service.kitchen_cancel_order(
        session=session, order_id=order_id, staff=staff, reason=body.reason
    )
    return ApiEnvelope(data=_to_cancellation_data(outcome))


@router.patch("/{order_id}/status", response_model=ApiEnvelope)
def update_order_status(
    session: SessionDep, staff: KitchenStaff, order_id: int, body: OrderStatusUpdateRequest
) -> ApiEnvelope:
    """
    推进订单状态

    请求路径: PATCH /api/v1/orders/{order_id}/status

    Raises:
        AppError: 状态流转不合法（409003）；CANCELLED / REJECTED 需走专门接口（400001）
    """
    order = order_service.update_order_status(
        session=session, order_id=order_id, new_status=body.status, user=staff, notes=body.notes
    )
    return ApiEnvelope(data=_to_order_data(order))


@router.post("/{order_id}/admin-cancel", response_model=ApiEnvelope)
def admin_cancel_order(
    session: SessionDep, admin: AdminUser, order_id: int, body: AdminCancelRequest
) -> ApiEnvelope:
    """管理员取消，请求路径: POST /api/v1/orders/{order_id}/admin-cancel"""
    outcome = order_service.admin_cancel_order(
        session=session,
        order_id=order_id,
        admin=admin,
        reason=body.reason,
        issue_refund=body.issue_refund,
        restore_vouchers_flag=body.restore_vouchers,
    )
    return ApiEnvelope(data=_to_cancellation_data(outcome))
