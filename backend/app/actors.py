from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class Actor:
    """Identity the engine acts on behalf of; authentication happens upstream."""

    user_id: str
    role: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def normalized_role(self) -> str:
        return str(self.role or "").strip().upper()

    def has_permission(self, code: str) -> bool:
        return code in self.permissions
