"""
Operator wizard that configures and finalizes a grant for one request.

The wizard's working state lives in the admin_sessions table, so a half-finished
configuration survives process restarts. Steps follow an explicit transition
table; requests attempting any other move are rejected without mutation.

    start            -> selecting_devices
    set_device_limit -> selecting_expiry
    back_to_devices  -> selecting_devices
    set_expiry       -> confirming
    back_to_expiry   -> selecting_expiry
    confirm          -> granted (session deleted)
    cancel           -> cancelled (session deleted, request stays pending)
    quick_grant      -> granted with fixed parameters
"""

import logging
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from accessgate.access import AccessGrantEvaluator
from accessgate.database import Database
from accessgate.errors import (
    AlreadyProcessed,
    InvalidChoice,
    InvalidTransition,
    SessionExpired,
    Unauthorized,
)
from accessgate.models import (
    AdminSession,
    Grant,
    Request,
    RequestStatus,
    UserStatus,
    WizardStep,
    now_ts,
)
from accessgate.request_store import RequestLifecycleStore

DEVICE_LIMIT_CHOICES = (1, 2, 3, 5, 10, 0)
EXPIRY_DAYS_CHOICES = (7, 30, 90, 365, 0)
SECONDS_PER_DAY = 86400

ANY_STEP = frozenset(WizardStep)

# action -> (steps it may be taken from, resulting step)
TRANSITIONS: Dict[str, Tuple[FrozenSet[WizardStep], WizardStep]] = {
    "set_device_limit": (
        frozenset({WizardStep.SELECTING_DEVICES, WizardStep.SELECTING_EXPIRY}),
        WizardStep.SELECTING_EXPIRY,
    ),
    "back_to_devices": (ANY_STEP, WizardStep.SELECTING_DEVICES),
    "set_expiry": (ANY_STEP, WizardStep.CONFIRMING),
    "back_to_expiry": (
        frozenset({WizardStep.SELECTING_EXPIRY, WizardStep.CONFIRMING}),
        WizardStep.SELECTING_EXPIRY,
    ),
    "confirm": (frozenset({WizardStep.CONFIRMING}), WizardStep.CONFIRMING),
}


class AdminWizard:
    """Durable multi-step grant configuration, driven by the operator only."""

    def __init__(
        self,
        db: Database,
        requests: RequestLifecycleStore,
        evaluator: AccessGrantEvaluator,
        default_device_limit: int = 2,
        default_expires_days: int = 30,
        quick_grant_device_limit: int = 5,
        clock: Callable[[], int] = now_ts,
    ):
        self.db = db
        self.requests = requests
        self.evaluator = evaluator
        self.default_device_limit = default_device_limit
        self.default_expires_days = default_expires_days
        self.quick_grant_device_limit = quick_grant_device_limit
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    # ---------- guards ----------

    def _require_operator(self, actor_id: int) -> None:
        if not self.evaluator.is_operator(actor_id):
            self.logger.warning(f"Non-operator {actor_id} attempted a wizard action")
            raise Unauthorized(f"user {actor_id}")

    def _require_pending(self, request_id: str) -> Request:
        request = self.requests.require(request_id)
        if request.status != RequestStatus.PENDING:
            raise AlreadyProcessed(f"request {request_id}")
        return request

    def _check_transition(self, action: str, session: AdminSession) -> WizardStep:
        allowed_from, target = TRANSITIONS[action]
        if session.step not in allowed_from:
            self.logger.info(
                f"Rejected '{action}' for request {session.request_id} at step '{session.step.value}'"
            )
            raise InvalidTransition(f"{action} from {session.step.value}")
        return target

    def _session_or_start(self, request_id: str, actor_id: int) -> AdminSession:
        """Existing session, or a fresh one when none is on record (restart, reaped, stale button)."""
        session = self.db.get_session(request_id)
        if session is not None:
            return session
        return self.start(request_id, actor_id)

    def _require_session(self, request_id: str) -> AdminSession:
        session = self.db.get_session(request_id)
        if session is None:
            raise SessionExpired(f"request {request_id}")
        return session

    # ---------- transitions ----------

    def get_session(self, request_id: str) -> Optional[AdminSession]:
        return self.db.get_session(request_id)

    def start(
        self,
        request_id: str,
        actor_id: int,
        default_device_limit: Optional[int] = None,
        default_expires_days: Optional[int] = None,
    ) -> AdminSession:
        """Begin (or restart) the wizard for a pending request; always resets working values."""
        self._require_operator(actor_id)
        self._require_pending(request_id)
        self.db.upsert_session(
            request_id,
            actor_id,
            self.default_device_limit if default_device_limit is None else default_device_limit,
            self.default_expires_days if default_expires_days is None else default_expires_days,
            WizardStep.SELECTING_DEVICES,
        )
        self.logger.info(f"Wizard started for request {request_id} by {actor_id}")
        return self._require_session(request_id)

    def set_device_limit(
        self, request_id: str, actor_id: int, device_limit: int
    ) -> AdminSession:
        self._require_operator(actor_id)
        if device_limit not in DEVICE_LIMIT_CHOICES:
            raise InvalidChoice(f"device limit {device_limit}")
        session = self._session_or_start(request_id, actor_id)
        target = self._check_transition("set_device_limit", session)
        self.db.update_session(request_id, target, device_limit=device_limit)
        return self._require_session(request_id)

    def back_to_devices(self, request_id: str, actor_id: int) -> AdminSession:
        self._require_operator(actor_id)
        session = self._require_session(request_id)
        target = self._check_transition("back_to_devices", session)
        self.db.update_session(request_id, target)
        return self._require_session(request_id)

    def set_expiry(
        self, request_id: str, actor_id: int, expires_days: int
    ) -> AdminSession:
        self._require_operator(actor_id)
        if expires_days not in EXPIRY_DAYS_CHOICES:
            raise InvalidChoice(f"expiry days {expires_days}")
        session = self._session_or_start(request_id, actor_id)
        target = self._check_transition("set_expiry", session)
        self.db.update_session(request_id, target, expires_days=expires_days)
        return self._require_session(request_id)

    def back_to_expiry(self, request_id: str, actor_id: int) -> AdminSession:
        self._require_operator(actor_id)
        session = self._require_session(request_id)
        target = self._check_transition("back_to_expiry", session)
        self.db.update_session(request_id, target)
        return self._require_session(request_id)

    def confirm(self, request_id: str, actor_id: int) -> Grant:
        """
        Finalize the configured grant.

        Raises:
            NotFound: the request does not exist
            AlreadyProcessed: the request is no longer pending (the session is dropped)
            SessionExpired: no wizard session is on record; the operator must restart
        """
        self._require_operator(actor_id)
        request = self.requests.require(request_id)
        if request.status != RequestStatus.PENDING:
            self.db.delete_session(request_id)
            raise AlreadyProcessed(f"request {request_id}")
        session = self.db.get_session(request_id)
        if session is None:
            # A concurrent finalizer deletes the session after winning
            current = self.requests.get(request_id)
            if current is not None and current.status != RequestStatus.PENDING:
                raise AlreadyProcessed(f"request {request_id}")
            raise SessionExpired(f"request {request_id}")
        self._check_transition("confirm", session)
        return self._finalize(request, session.device_limit, session.expires_days)

    def quick_grant(self, request_id: str, actor_id: int) -> Grant:
        """Grant the fixed quick profile (configured device limit, no expiry), skipping all steps."""
        self._require_operator(actor_id)
        request = self.requests.require(request_id)
        if request.status != RequestStatus.PENDING:
            self.db.delete_session(request_id)
            raise AlreadyProcessed(f"request {request_id}")
        return self._finalize(request, self.quick_grant_device_limit, 0)

    def _finalize(self, request: Request, device_limit: int, expires_days: int) -> Grant:
        expires_at = (
            self.clock() + expires_days * SECONDS_PER_DAY if expires_days != 0 else None
        )
        # The conditional transition picks the single winner among concurrent finalizers
        self.requests.transition(request.request_id, RequestStatus.APPROVED)
        self.evaluator.grant(request.user_id, device_limit, expires_at)
        self.db.delete_session(request.request_id)
        self.logger.info(
            f"Request {request.request_id} granted: user={request.user_id} device_limit={device_limit} expires_days={expires_days}"
        )
        return Grant(
            request_id=request.request_id,
            user_id=request.user_id,
            device_limit=device_limit,
            expires_days=expires_days,
            expires_at=expires_at,
        )

    def cancel(self, request_id: str, actor_id: int) -> None:
        """Abandon the wizard; the request stays pending."""
        self._require_operator(actor_id)
        self.db.delete_session(request_id)
        self.logger.info(f"Wizard cancelled for request {request_id}")

    def deny(self, request_id: str, actor_id: int) -> Request:
        self._require_operator(actor_id)
        request = self.requests.transition(request_id, RequestStatus.DENIED)
        self.db.set_user_status(request.user_id, UserStatus.DENIED)
        self.db.delete_session(request_id)
        return request

    def ban(self, request_id: str, actor_id: int) -> Request:
        """Ban the request's owner. The request itself is closed only if still pending."""
        self._require_operator(actor_id)
        request = self.requests.require(request_id)
        self.evaluator.ban(request.user_id)
        try:
            request = self.requests.transition(request_id, RequestStatus.BANNED)
        except AlreadyProcessed:
            self.logger.info(
                f"Request {request_id} already '{request.status.value}'; user {request.user_id} banned anyway"
            )
        self.db.delete_session(request_id)
        return request

    def reopen(self, request_id: str, actor_id: int) -> str:
        self._require_operator(actor_id)
        new_request_id = self.requests.reopen(request_id)
        self.db.delete_session(request_id)
        return new_request_id

    def reap_stale_sessions(self, max_age_hours: int = 24) -> int:
        """Delete sessions untouched for longer than max_age_hours. Requests are left as they are."""
        cutoff = self.clock() - max_age_hours * 3600
        removed = self.db.delete_sessions_older_than(cutoff)
        self.logger.info(
            f"Reaped {removed} admin session(s) older than {max_age_hours}h"
        )
        return removed
