"""User data access layer."""

from datetime import datetime
from typing import Optional

from approval.models.entities import User
from .base import UserDirectory
from .session import SessionRepository


class UserRepository(SessionRepository, UserDirectory):
    """Lookups against the users table."""

    def exists(self, user_id: str) -> bool:
        with self.reading("look up user"):
            return self.db.query(User.id).filter(User.id == user_id).first() is not None

    def create(self, user_id: str, email: Optional[str] = None,
               name: Optional[str] = None) -> User:
        user = User(
            id=user_id,
            email=email,
            name=name,
            created_at=datetime.utcnow(),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user
