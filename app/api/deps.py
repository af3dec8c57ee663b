# app/api/deps.py
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.authz import get_current_actor, get_policy, require_capability
from app.core.config import AppSettings, get_settings
from app.db.session import get_session, get_session_maker
from app.services.capabilities import RolePolicy
from app.services.movement_engine import MovementEngine


def get_app_settings() -> AppSettings:
    return get_settings()


async def get_movement_engine(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    policy: RolePolicy = Depends(get_policy),
    settings: AppSettings = Depends(get_app_settings),
) -> MovementEngine:
    """
    引擎本身不持有请求状态；每个请求构造一次，便于测试替换会话工厂 / 策略。
    """
    return MovementEngine(session_maker, policy=policy, settings=settings)


__all__ = (
    "get_session",
    "get_session_maker",
    "get_current_actor",
    "get_policy",
    "require_capability",
    "get_app_settings",
    "get_movement_engine",
)
