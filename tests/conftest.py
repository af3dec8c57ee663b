# tests/conftest.py
from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# ============================================================
# ★★ 关键：在 import app.main 之前设置 DSN ★★
#   app.db.session 在导入时按配置建 engine；测试里每个用例再换成独立 sqlite 文件库
# ============================================================
os.environ.setdefault("STAGEFLOW_DATABASE_URL", "sqlite+aiosqlite:///./.stageflow-test.db")
os.environ.setdefault("STAGEFLOW_ENV", "test")

from app.db.base import Base, init_models  # noqa: E402
from app.db.session import build_engine, get_session, get_session_maker  # noqa: E402
from app.main import app  # noqa: E402

init_models()


# =========================================
# 每用例独立 Engine（独立 sqlite 文件，NullPool 避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    # 与应用同一套 sqlite 事务设置（BEGIN IMMEDIATE）
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stageflow.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    造数 / 断言用 Session（用例结束时 rollback 未提交部分）
    """
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# FastAPI / httpx AsyncClient
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_maker] = lambda: async_session_maker

    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
