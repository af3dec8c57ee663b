# app/authz.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request, status

from app.api.problem import raise_problem
from app.services.capabilities import Actor, Capability, RolePolicy
from app.services.workflow_errors import PermissionDenied

HEADER_USER_ID = "X-User-Id"
HEADER_ORGANIZATION_ID = "X-Organization-Id"
HEADER_ROLE = "X-Role"


class IdentityResolver:
    """
    身份解析接口：由上游鉴权网关保证凭证有效，这里只负责把请求映射为 Actor。
    解析失败返回 None（→ 401）。
    """

    def resolve(self, request: Request) -> Optional[Actor]:
        raise NotImplementedError


class HeaderIdentityResolver(IdentityResolver):
    """读取网关注入的 X-User-Id / X-Organization-Id / X-Role。"""

    def resolve(self, request: Request) -> Optional[Actor]:
        user_id = (request.headers.get(HEADER_USER_ID) or "").strip()
        org_id = (request.headers.get(HEADER_ORGANIZATION_ID) or "").strip()
        role = (request.headers.get(HEADER_ROLE) or "").strip()
        if not user_id or not org_id or not role:
            return None
        return Actor(user_id=user_id, organization_id=org_id, role=role)


_default_resolver = HeaderIdentityResolver()
_default_policy = RolePolicy()


def get_identity_resolver() -> IdentityResolver:
    return _default_resolver


def get_policy() -> RolePolicy:
    return _default_policy


def get_current_actor(
    request: Request,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Actor:
    actor = resolver.resolve(request)
    if actor is None:
        raise_problem(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="unauthenticated",
            message="Not authenticated",
        )
    return actor


def require_capability(capability: Capability):
    """
    用法：
        @router.post("/x")
        async def x(actor: Actor = Depends(require_capability(Capability.MANAGE_WORKFLOW))): ...
    """

    def dep(
        actor: Actor = Depends(get_current_actor),
        policy: RolePolicy = Depends(get_policy),
    ) -> Actor:
        try:
            policy.ensure(actor, capability)
        except PermissionDenied as e:
            raise_problem(
                status_code=status.HTTP_403_FORBIDDEN,
                error_code=e.code,
                message=e.message,
                context={"missing_permissions": [capability.value]},
            )
        return actor

    return dep
