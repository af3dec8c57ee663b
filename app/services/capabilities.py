# app/services/capabilities.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional

from app.services.workflow_errors import PermissionDenied


class Role(str, Enum):
    OWNER = "Owner"
    WORKER = "Worker"


class Capability(str, Enum):
    VIEW = "view"
    MOVE_ITEMS = "items:move"
    REWORK_ITEMS = "items:rework"
    ALLOCATE_ITEMS = "items:allocate"
    MANAGE_ORDERS = "orders:manage"
    MANAGE_WORKFLOW = "workflow:manage"


DEFAULT_ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.OWNER: frozenset(Capability),
    Role.WORKER: frozenset(c for c in Capability if c is not Capability.MANAGE_WORKFLOW),
}


@dataclass(frozen=True)
class Actor:
    """身份解析结果（外部鉴权网关提供）。"""

    user_id: str
    organization_id: str
    role: str


class RolePolicy:
    """角色 → 能力 映射；未知角色没有任何能力。"""

    def __init__(self, grants: Optional[Mapping[Role, FrozenSet[Capability]]] = None) -> None:
        self._grants = dict(grants or DEFAULT_ROLE_CAPABILITIES)

    def capabilities(self, role: str) -> FrozenSet[Capability]:
        try:
            return self._grants.get(Role(role), frozenset())
        except ValueError:
            return frozenset()

    def allows(self, role: str, capability: Capability) -> bool:
        return capability in self.capabilities(role)

    def ensure(self, actor: Actor, capability: Capability) -> None:
        if not self.allows(actor.role, capability):
            raise PermissionDenied(
                f"Forbidden: role {actor.role!r} lacks permission {capability.value!r}."
            )
