"""User mirroring from platform-issued session tokens."""

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from willtank.db.models import User

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: UUID) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def get_or_create_user(
    db: Session,
    user_id: UUID,
    email: str | None = None,
    full_name: str | None = None,
) -> User:
    """
    Return the local user row, creating it on first sight.

    Email and name from the token refresh the mirror when they change.
    """
    user = get_user(db, user_id)
    if user:
        changed = False
        if email and user.email != email:
            user.email = email
            changed = True
        if full_name and user.full_name != full_name:
            user.full_name = full_name
            changed = True
        if changed:
            db.commit()
        return user

    user = User(id=user_id, email=email, full_name=full_name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first request created the row
        db.rollback()
        user = get_user(db, user_id)
        if user is None:
            raise
        return user

    db.refresh(user)
    logger.info("Mirrored new user %s", user_id)
    return user
