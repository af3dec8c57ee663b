# app/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@asynccontextmanager
async def tx_commit(
    session_maker: async_sessionmaker[AsyncSession],
    *,
    lock_timeout_ms: int = 0,
) -> AsyncIterator[AsyncSession]:
    """
    独立会话 + begin/commit 事务；异常时整体回滚。

    批量流转中每个条目各自进入一次，失败不影响同批其他条目。
    """
    async with session_maker() as session:
        async with session.begin():
            if lock_timeout_ms and session.bind.dialect.name == "postgresql":
                # 事务内护栏：行锁等待上限，超时后 PG 抛 lock_not_available
                await session.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))
            yield session
