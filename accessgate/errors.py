"""Domain errors raised by the access workflow.

Each error carries the message template key of the short notice shown to the
actor. They are raised by the core components and handled in one place, the
event dispatcher in accessgate.app.
"""


class AccessGateError(Exception):
    """Base class for expected, user-reportable failures."""

    message_key = "errors.generic"
    alert = False

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail


class NotFound(AccessGateError):
    message_key = "errors.not_found"


class AlreadyProcessed(AccessGateError):
    message_key = "errors.already_processed"


class SessionExpired(AccessGateError):
    message_key = "errors.session_expired"
    alert = True


class Unauthorized(AccessGateError):
    message_key = "errors.unauthorized"


class DeviceLimitExceeded(AccessGateError):
    message_key = "errors.device_limit_exceeded"
    alert = True


class AccessExpiredOrAbsent(AccessGateError):
    message_key = "errors.access_expired_or_absent"
    alert = True


class UserBanned(AccessGateError):
    message_key = "errors.user_banned"
    alert = True


class ProxyUnavailable(AccessGateError):
    message_key = "errors.proxy_unavailable"
    alert = True


class InvalidTransition(AccessGateError):
    message_key = "errors.invalid_transition"


class InvalidChoice(AccessGateError):
    message_key = "errors.invalid_choice"
