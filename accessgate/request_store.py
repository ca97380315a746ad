"""Access request lifecycle: creation, finalization and reopening of requests."""

import logging
from typing import Callable, List, Optional, Tuple

from accessgate.database import Database
from accessgate.errors import AlreadyProcessed, NotFound, UserBanned
from accessgate.models import (
    Request,
    RequestStatus,
    RequestView,
    UserStatus,
    now_ts,
)

TERMINAL_STATUSES = {
    RequestStatus.APPROVED,
    RequestStatus.DENIED,
    RequestStatus.BANNED,
    RequestStatus.SUPERSEDED,
}


class RequestLifecycleStore:
    """Creates requests and moves them out of 'pending' exactly once."""

    def __init__(self, db: Database, clock: Callable[[], int] = now_ts):
        self.db = db
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def create_request(self, user_id: int) -> Tuple[str, bool]:
        """
        Open an access request for a user.

        Returns:
            (request_id, already_pending). When the user already has a pending
            request its id is returned unchanged with already_pending=True.

        Raises:
            NotFound: unknown user
            UserBanned: the user is banned
        """
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFound(f"user {user_id}")
        if user.status == UserStatus.BANNED:
            raise UserBanned(f"user {user_id}")

        request_id, created = self.db.insert_pending_request(user_id)
        self.db.set_user_status(user_id, UserStatus.PENDING)
        return request_id, not created

    def get(self, request_id: str) -> Optional[Request]:
        return self.db.get_request(request_id)

    def require(self, request_id: str) -> Request:
        request = self.db.get_request(request_id)
        if request is None:
            raise NotFound(f"request {request_id}")
        return request

    def get_view(self, request_id: str) -> Optional[RequestView]:
        return self.db.get_request_view(request_id)

    def transition(self, request_id: str, target: RequestStatus) -> Request:
        """
        Move a pending request to a terminal status.

        The conditional update is the only guard against concurrent finalizers:
        the first to commit wins, every later caller gets AlreadyProcessed.
        """
        if target not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot transition a request to '{target.value}'")
        if not self.db.update_request_status_if_pending(request_id, target):
            self.require(request_id)
            raise AlreadyProcessed(f"request {request_id}")
        return self.require(request_id)

    def reopen(self, request_id: str) -> str:
        """Supersede a stale pending request with a fresh pending one for the same user."""
        request = self.require(request_id)
        new_request_id = self.db.supersede_and_reopen(request_id)
        if new_request_id is None:
            raise AlreadyProcessed(f"request {request_id}")
        self.db.set_user_status(request.user_id, UserStatus.PENDING)
        return new_request_id

    def list_by_status(
        self, status: RequestStatus, newest_first: bool = False
    ) -> List[RequestView]:
        return self.db.list_request_views(status, newest_first=newest_first)

    def partition_stuck(
        self, threshold_seconds: int, now: Optional[int] = None
    ) -> Tuple[List[RequestView], List[RequestView]]:
        """Split pending requests (oldest first) into (stuck, fresh) by age."""
        if now is None:
            now = self.clock()
        cutoff = now - threshold_seconds
        stuck, fresh = [], []
        for view in self.list_by_status(RequestStatus.PENDING):
            if view.request.created_at < cutoff:
                stuck.append(view)
            else:
                fresh.append(view)
        return stuck, fresh
