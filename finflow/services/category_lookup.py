"""
Read-only category lookup used to validate category references on writes.
"""
from typing import Optional
from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from finflow.models import Category


class CategoryLookup:
    def __init__(self, db: Session):
        self.db = db

    def get_usable(self, category_id: str, user_id: str) -> Optional[Category]:
        """Active category that is either global or owned by the user."""
        stmt = select(Category).where(
            Category.id == category_id,
            Category.is_active.is_(True),
            or_(Category.user_id == user_id, Category.user_id.is_(None)),
        )
        return self.db.execute(stmt).scalar_one_or_none()
