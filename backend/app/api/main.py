"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（app/main.py）上。

路由模块说明：
- orders: 订单（顾客下单/取消，厨房接单/拒单/推进状态，管理员取消）
- vouchers: 券余额、可用数量、截单信息
- auto_orders: 自动下单管理（手动触发、结果日志、失败统计）和顾客的失败记录
- payments: 支付结果回调（订单支付、订阅激活）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from app.api.routes import (
    auto_orders,  # 自动下单管理路由
    orders,  # 订单路由
    payments,  # 支付结果回调路由
    utils,  # 工具路由
    vouchers,  # 券路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(vouchers.router)  # /vouchers/*
api_router.include_router(auto_orders.router)  # /admin/auto-orders/*
api_router.include_router(auto_orders.customer_router)  # /auto-orders/*
api_router.include_router(payments.router)  # /payments/*
api_router.include_router(utils.router)  # /utils/*
