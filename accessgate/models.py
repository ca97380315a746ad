"""Data models for the application."""

import datetime
import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def now_ts() -> int:
    """Current UTC time as integer epoch seconds."""
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp())


class UserStatus(str, enum.Enum):
    NEW = "new"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    BANNED = "banned"
    REVOKED = "revoked"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    BANNED = "banned"
    SUPERSEDED = "superseded"


class WizardStep(str, enum.Enum):
    SELECTING_DEVICES = "selecting_devices"
    SELECTING_EXPIRY = "selecting_expiry"
    CONFIRMING = "confirming"


@dataclass
class User:
    """Model for a user known to the bot."""

    user_id: int
    username: Optional[str]
    display_name: Optional[str]
    status: UserStatus
    device_limit: int
    devices_used: int
    expires_at: Optional[int]
    menu_message_id: Optional[int]
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            user_id=int(row["user_id"]),
            username=row["username"],
            display_name=row["display_name"],
            status=UserStatus(row["status"]),
            device_limit=int(row["device_limit"] or 0),
            devices_used=int(row["devices_used"]),
            expires_at=row["expires_at"],
            menu_message_id=row["menu_msg_id"],
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )

    @property
    def label(self) -> str:
        """Short human label: display name, @username or id."""
        if self.display_name:
            return self.display_name
        if self.username:
            return f"@{self.username}"
        return f"id:{self.user_id}"


@dataclass
class Request:
    """Model for an access request."""

    request_id: str
    user_id: int
    status: RequestStatus
    created_at: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Request":
        return cls(
            request_id=row["id"],
            user_id=int(row["user_id"]),
            status=RequestStatus(row["status"]),
            created_at=int(row["created_at"]),
        )

    @property
    def short_id(self) -> str:
        return self.request_id[:8]


@dataclass
class RequestView:
    """A request joined with the attributes of the user who owns it."""

    request: Request
    user: User


@dataclass
class AdminSession:
    """Model for an in-progress operator wizard, keyed by request id."""

    request_id: str
    operator_id: int
    device_limit: int
    expires_days: int
    step: WizardStep
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AdminSession":
        return cls(
            request_id=row["req_id"],
            operator_id=int(row["admin_id"]),
            device_limit=int(row["device_limit"]),
            expires_days=int(row["expires_days"]),
            step=WizardStep(row["step"]),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )


@dataclass
class Grant:
    """Outcome of a finalized wizard or quick grant."""

    request_id: str
    user_id: int
    device_limit: int
    expires_days: int
    expires_at: Optional[int]
