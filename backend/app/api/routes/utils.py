"""
工具路由模块

健康检查（负载均衡器 / 容器探活）。
"""
from fastapi import APIRouter
from sqlmodel import select

from app.api.deps import SessionDep

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
def health_check(session: SessionDep) -> bool:
    """
    健康检查端点

    执行一次 SELECT 1，数据库不可用时由全局异常处理返回 500。

    请求路径: GET /api/v1/utils/health-check/
    """
    session.exec(select(1)).one()
    return True
