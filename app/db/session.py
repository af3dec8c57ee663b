# app/db/session.py
# 统一的异步会话工厂 + FastAPI 依赖（get_session / get_session_maker）
from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings

log = logging.getLogger("stageflow.db")


# ---- DSN 归一：把 DSN 统一到 psycopg3 与 aiosqlite ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql://..."'，这里统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    # sqlite:/// → sqlite+aiosqlite:///
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    # postgres/postgresql(+*) → postgresql+psycopg
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _sqlite_begin_immediate(engine: AsyncEngine) -> None:
    """
    sqlite 驱动默认延迟到第一次写才 BEGIN，FOR UPDATE 也被忽略。
    改为事务开始即 BEGIN IMMEDIATE：单条目事务从第一次读起就持有写锁，
    同一条目的并发流转按先后串行执行。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        # 关闭驱动自带的事务管理，由 begin 事件接管
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    url: str,
    *,
    echo: bool = False,
    connect_args: Optional[Dict[str, Any]] = None,
    **engine_kw: Any,
) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    connect_args = dict(connect_args or {})
    if dsn.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    engine = create_async_engine(
        dsn, future=True, pool_pre_ping=True, echo=echo, connect_args=connect_args, **engine_kw
    )
    if engine.dialect.name == "sqlite":
        _sqlite_begin_immediate(engine)
    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


_settings = get_settings()

async_engine: AsyncEngine = build_engine(_settings.DATABASE_URL, echo=_settings.SQL_ECHO)
AsyncSessionLocal: async_sessionmaker[AsyncSession] = build_session_maker(async_engine)

log.info("DB dialect: %s", async_engine.dialect.name)


# ---- FastAPI 依赖 ----
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    批量流转按“每条目一个事务”执行，服务层需要会话工厂而非单个会话。
    """
    return AsyncSessionLocal


# ---- 关闭引擎（测试/生命周期） ----
async def close_engines() -> None:
    await async_engine.dispose()
