from __future__ import annotations

from dataclasses import dataclass

from flask import request
from flask_login import current_user


@dataclass(frozen=True)
class RequestContext:
    """Who is acting and from where. Passed explicitly into every workflow call."""

    actor_id: int
    role: str
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_request(cls) -> "RequestContext":
        return cls(
            actor_id=current_user.id,
            role=(current_user.role or "").lower(),
            ip_address=request.remote_addr,
            user_agent=(request.user_agent.string or None),
        )

    @classmethod
    def system(cls, actor_id: int, role: str = "admin", source: str = "cli") -> "RequestContext":
        return cls(actor_id=actor_id, role=role, ip_address=None, user_agent=source)
