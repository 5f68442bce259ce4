"""In-memory user repository backing the demo service."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .database import DEFAULT_ROLE, INITIAL_USERS, UniqueConstraintViolation
from .models import User


class InMemoryUserRepository:
    """Owns a mapping of user id to record; all mutation goes through here.

    Mirrors the user operations of :class:`app.database.Database`, including
    the unique email rule. Ids come from a counter and are never reused.
    """

    def __init__(
        self,
        *,
        seed: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._users: Dict[int, User] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        if seed:
            for name, email, role in INITIAL_USERS:
                self.create_user(name, email, role)

    def create_user(self, name: str, email: str, role: str = DEFAULT_ROLE) -> User:
        with self._lock:
            if self._email_taken(email):
                raise UniqueConstraintViolation("A user with that email already exists")
            now = self._clock()
            user = User(
                id=self._next_id,
                name=name,
                email=email,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            self._next_id += 1
            return user

    def get_all_users(self) -> List[User]:
        with self._lock:
            users = list(self._users.values())
        return sorted(users, key=lambda user: (user.created_at, user.id), reverse=True)

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def count_users(self) -> int:
        with self._lock:
            return len(self._users)

    def update_user(self, user_id: int, name: str, email: str, role: str) -> Optional[User]:
        with self._lock:
            existing = self._users.get(user_id)
            if existing is None:
                return None
            if self._email_taken(email, exclude_id=user_id):
                raise UniqueConstraintViolation("A user with that email already exists")
            updated = User(
                id=existing.id,
                name=name,
                email=email,
                role=role,
                created_at=existing.created_at,
                updated_at=self._clock(),
            )
            self._users[user_id] = updated
            return updated

    def delete_user(self, user_id: int) -> bool:
        with self._lock:
            return self._users.pop(user_id, None) is not None

    def _email_taken(self, email: str, *, exclude_id: Optional[int] = None) -> bool:
        return any(user.email == email and user.id != exclude_id for user in self._users.values())


__all__ = ["InMemoryUserRepository"]
