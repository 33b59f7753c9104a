"""Phone management session model."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Session(BaseModel):
    """Authenticated session against one phone's HTTP management API."""

    address: str
    session_id: str
    role: str = "admin"
    cookies: dict[str, str] = Field(default_factory=dict)
    active: bool = True
    expires_at: datetime
    username: str = ""
    authenticated_at: datetime
    last_used_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.active and now < self.expires_at

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def cookie_header(self) -> str:
        parts = []
        for name, value in self.cookies.items():
            parts.append(f"{name}={value}" if value else name)
        return "; ".join(parts)
