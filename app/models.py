"""Domain models shared by the persistent and in-memory user services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user account stored by one of the repositories."""

    id: int
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class LogEntry:
    """A single activity log row. Entries are never modified once written."""

    id: int
    level: str
    message: str
    endpoint: Optional[str]
    user_agent: Optional[str]
    ip_address: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "level": self.level,
            "message": self.message,
            "endpoint": self.endpoint,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Stats:
    """Approximate database counters.

    The four values come from independent queries and are not guaranteed to
    describe the same instant.
    """

    total_users: int
    admin_users: int
    total_logs: int
    recent_logs: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalUsers": self.total_users,
            "adminUsers": self.admin_users,
            "totalLogs": self.total_logs,
            "recentLogs": self.recent_logs,
        }


__all__ = ["LogEntry", "Stats", "User"]
