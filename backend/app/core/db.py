"""
数据库连接模块

管理数据库引擎的创建。表结构通过 Alembic 迁移管理（app/alembic/versions），
不要在这里建表。

使用前确保 app.models 已导入，否则 SQLModel 无法解析表之间的外键。
"""
from sqlmodel import Session, create_engine

from app.core.config import settings

# pool_pre_ping: 批处理 worker 是长驻进程，连接可能被数据库侧回收
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


def init_db(session: Session) -> None:
    """
    初始化数据库钩子

    种子数据（区域、厨房、菜单）由后台管理服务维护，这里只做连通性检查。
    """
    session.connection()
