"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。

- SessionDep: 数据库会话
- CurrentUser: 从 Bearer JWT 解析出的当前用户（token 由外部认证服务签发，sub = 用户 ID）
- KitchenStaff / AdminUser: 按角色限制的当前用户
- ConfigDep: 业务配置快照（截单、取消、自动下单）
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

from fastapi import Depends, HTTPException, status  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from app.api.errors import Forbidden
from app.api.schemas import TokenPayload
from app.core import security
from app.core.db import engine
from app.enums import UserRole
from app.models import User
from app.services.config_service import BusinessConfig, get_config_provider

# 从请求头的 Authorization: Bearer <token> 中提取 token
reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭，测试中会被替换为 SQLite 会话。
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户（依赖注入）

    从 JWT token 中解析用户 ID，并查询数据库获取完整用户对象。

    Raises:
        HTTPException: token 无效、用户不存在时返回 401
    """
    try:
        payload = security.decode_access_token(token.credentials)
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _credentials_error()
    if not token_data.sub:
        raise _credentials_error()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise _credentials_error()
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_kitchen_staff(current_user: CurrentUser) -> User:
    """厨房员工（管理员也可以操作厨房接口）"""
    if current_user.role not in (UserRole.KITCHEN_STAFF, UserRole.ADMIN):
        raise Forbidden("Kitchen staff only")
    return current_user


def get_admin_user(current_user: CurrentUser) -> User:
    if current_user.role != UserRole.ADMIN:
        raise Forbidden("Admin only")
    return current_user


KitchenStaff = Annotated[User, Depends(get_kitchen_staff)]
AdminUser = Annotated[User, Depends(get_admin_user)]


def get_business_config() -> BusinessConfig:
    """当前业务配置快照"""
    return get_config_provider().get()


ConfigDep = Annotated[BusinessConfig, Depends(get_business_config)]
