"""
支付结果回调路由

外部支付服务在支付完成 / 失败后回调这里：
- ORDER: 交给 order_service.handle_payment_result（自动接单、失败取消退券、迟到付款退款）
- SUBSCRIPTION: 支付成功激活订阅并发券
"""
from __future__ import annotations

from fastapi import APIRouter, Header

from app.api.deps import ConfigDep, SessionDep
from app.api.errors import AppError
from app.api.schemas import ApiEnvelope, OrderData, PaymentResultRequest, SubscriptionData
from app.core.config import settings
from app.services import order_service, subscription_service

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/result", response_model=ApiEnvelope)
def payment_result(
    session: SessionDep,
    config: ConfigDep,
    body: PaymentResultRequest,
    authorization: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    接收支付结果

    请求路径: POST /api/v1/payments/result

    配置了 PAYMENT_WEBHOOK_SECRET 时，Authorization 头必须是该密钥
    （或 Bearer 加该密钥）。
    """
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if secret and authorization not in (secret, f"Bearer {secret}"):
        raise AppError(code=401001, message="Unauthorized", status_code=401)

    if body.entity_type == "ORDER":
        order = order_service.handle_payment_result(
            session=session,
            order_id=body.entity_id,
            payment_status=body.payment_status,
            config=config,
        )
        return ApiEnvelope(data=OrderData.model_validate(order, from_attributes=True))

    subscription = subscription_service.handle_subscription_payment_result(
        session=session, subscription_id=body.entity_id, payment_status=body.payment_status
    )
    return ApiEnvelope(data=SubscriptionData.model_validate(subscription, from_attributes=True))
