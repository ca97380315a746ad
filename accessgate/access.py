"""Access grant evaluation: who may use the gated resource, and with how many devices."""

import logging
from typing import Callable, Optional

from accessgate.database import Database
from accessgate.errors import (
    AccessExpiredOrAbsent,
    DeviceLimitExceeded,
    NotFound,
    UserBanned,
)
from accessgate.models import User, UserStatus, now_ts


class AccessGrantEvaluator:
    """
    Single authority for entitlement checks and grant mutations.

    The operator account is always approved and is never device-limited.
    A grant never resets devices_used: re-granting keeps the prior usage count.
    """

    def __init__(
        self, db: Database, operator_id: int, clock: Callable[[], int] = now_ts
    ):
        self.db = db
        self.operator_id = operator_id
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def is_operator(self, user_id: int) -> bool:
        return bool(self.operator_id) and int(user_id) == self.operator_id

    def is_approved(self, user: Optional[User], now: Optional[int] = None) -> bool:
        if user is None:
            return False
        if self.is_operator(user.user_id):
            return True
        if user.status != UserStatus.APPROVED:
            return False
        if now is None:
            now = self.clock()
        return user.expires_at is None or now <= user.expires_at

    def _require_user(self, user_id: int) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFound(f"user {user_id}")
        return user

    def grant(
        self, user_id: int, device_limit: int, expires_at: Optional[int]
    ) -> User:
        user = self._require_user(user_id)
        if user.status == UserStatus.BANNED:
            raise UserBanned(f"user {user_id}")
        if not self.db.grant_access(user_id, device_limit, expires_at):
            # Banned between the read and the write
            raise UserBanned(f"user {user_id}")
        return self._require_user(user_id)

    def check_device_slot(self, user: User) -> None:
        """Raise DeviceLimitExceeded when the user has no device slot left."""
        if self.is_operator(user.user_id):
            return
        if user.device_limit != 0 and user.devices_used >= user.device_limit:
            self.logger.info(
                f"Device limit reached for user {user.user_id}: {user.devices_used}/{user.device_limit}"
            )
            raise DeviceLimitExceeded(f"user {user.user_id}")

    def consume_one_device_slot(self, user: User) -> bool:
        """Lazy one-time activation: 0 -> 1 on first privileged use, no-op afterwards."""
        if self.is_operator(user.user_id) or user.devices_used != 0:
            return False
        return self.db.activate_device(user.user_id)

    def authorize_privileged(self, user_id: int, now: Optional[int] = None) -> User:
        """
        Gate for every privileged action.

        Raises:
            AccessExpiredOrAbsent: no current grant
            DeviceLimitExceeded: the grant has no device slot left
        """
        user = self.db.get_user(user_id)
        if not self.is_approved(user, now):
            raise AccessExpiredOrAbsent(f"user {user_id}")
        self.check_device_slot(user)
        if self.consume_one_device_slot(user):
            user = self._require_user(user_id)
        return user

    def set_device_limit(self, user_id: int, device_limit: int) -> User:
        if device_limit < 0:
            raise ValueError("device_limit must be >= 0")
        self._require_user(user_id)
        self.db.set_device_limit(user_id, device_limit)
        return self._require_user(user_id)

    def revoke(self, user_id: int) -> User:
        user = self._require_user(user_id)
        if user.status == UserStatus.BANNED:
            raise UserBanned(f"user {user_id}")
        self.db.set_user_status(user_id, UserStatus.REVOKED)
        return self._require_user(user_id)

    def ban(self, user_id: int) -> User:
        self._require_user(user_id)
        self.db.set_user_status(user_id, UserStatus.BANNED)
        self.logger.info(f"User {user_id} banned")
        return self._require_user(user_id)
