"""
User Repository

Reads and patches the entitlement snapshot on the users table.
"""

import logging
from typing import Optional

from app.domain.subscription import User, UserPatch, patch_to_record
from app.infrastructure.db.record_store import RecordStore


logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for user entitlement records."""

    TABLE = "users"

    def __init__(self, store: RecordStore):
        self._store = store

    async def get(self, user_id: str) -> Optional[User]:
        """
        Get a user by ID.

        Returns:
            User or None if no such row
        """
        record = await self._store.get(self.TABLE, user_id)
        return User.model_validate(record) if record else None

    async def update(self, user_id: str, patch: UserPatch) -> Optional[User]:
        """
        Apply a patch to a user.

        Only fields assigned on the patch are written.

        Returns:
            Updated user, or None if no row matched
        """
        changes = patch_to_record(patch)
        if not changes:
            return await self.get(user_id)

        record = await self._store.update(self.TABLE, user_id, changes)
        if record is None:
            logger.warning(f"User {user_id} not found for update")
            return None

        logger.info(f"Updated user {user_id}: {sorted(changes)}")
        return User.model_validate(record)
