"""
Typed button actions.

Every button carries a compact callback token ("tag:arg1:arg2") as its Discord
custom_id. Tokens are decoded into one of the frozen dataclasses below at the
transport boundary, so handlers only ever see a typed command.
"""

from dataclasses import dataclass, fields
from typing import ClassVar, Dict, Tuple, Type

PROFILE_KINDS = ("turbo", "stable", "both")


@dataclass(frozen=True)
class Command:
    tag: ClassVar[str] = ""
    operator_only: ClassVar[bool] = False


# ---------- user actions ----------


@dataclass(frozen=True)
class RequestAccess(Command):
    tag: ClassVar[str] = "req_access"


@dataclass(frozen=True)
class GetProfile(Command):
    tag: ClassVar[str] = "get_profile"
    kind: str

    def __post_init__(self):
        if self.kind not in PROFILE_KINDS:
            raise ValueError(f"Unknown profile kind: {self.kind!r}")


@dataclass(frozen=True)
class HowTo(Command):
    tag: ClassVar[str] = "howto"


# ---------- operator panel ----------


@dataclass(frozen=True)
class AdminMenu(Command):
    tag: ClassVar[str] = "admin_menu"
    operator_only: ClassVar[bool] = True


@dataclass(frozen=True)
class ListRequests(Command):
    tag: ClassVar[str] = "admin_list_requests"
    operator_only: ClassVar[bool] = True


@dataclass(frozen=True)
class StuckRequests(Command):
    tag: ClassVar[str] = "admin_stuck_requests"
    operator_only: ClassVar[bool] = True


@dataclass(frozen=True)
class ViewRequest(Command):
    tag: ClassVar[str] = "admin_view_req"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class ViewStuckRequest(Command):
    tag: ClassVar[str] = "admin_stuck_view"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class ViewProfile(Command):
    tag: ClassVar[str] = "admin_profile"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class QuickGrant(Command):
    tag: ClassVar[str] = "admin_quickgrant"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class StartApproval(Command):
    tag: ClassVar[str] = "admin_approve"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class SetDeviceLimit(Command):
    tag: ClassVar[str] = "admin_setdev"
    operator_only: ClassVar[bool] = True
    request_id: str
    device_limit: int


@dataclass(frozen=True)
class BackToDevices(Command):
    tag: ClassVar[str] = "admin_back_dev"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class SetExpiry(Command):
    tag: ClassVar[str] = "admin_setexp"
    operator_only: ClassVar[bool] = True
    request_id: str
    expires_days: int


@dataclass(frozen=True)
class BackToExpiry(Command):
    tag: ClassVar[str] = "admin_back_exp"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class ConfirmGrant(Command):
    tag: ClassVar[str] = "admin_confirm"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class CancelWizard(Command):
    tag: ClassVar[str] = "admin_cancel"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class DenyRequest(Command):
    tag: ClassVar[str] = "admin_deny"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class BanRequest(Command):
    tag: ClassVar[str] = "admin_ban"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class ReopenRequest(Command):
    tag: ClassVar[str] = "admin_reopen"
    operator_only: ClassVar[bool] = True
    request_id: str


@dataclass(frozen=True)
class ShowStats(Command):
    tag: ClassVar[str] = "admin_stats"
    operator_only: ClassVar[bool] = True


@dataclass(frozen=True)
class ShowRecentUsers(Command):
    tag: ClassVar[str] = "admin_stats_users"
    operator_only: ClassVar[bool] = True


@dataclass(frozen=True)
class ShowClients(Command):
    tag: ClassVar[str] = "admin_clients"
    operator_only: ClassVar[bool] = True
    page: int = 1


COMMAND_TYPES: Tuple[Type[Command], ...] = (
    RequestAccess,
    GetProfile,
    HowTo,
    AdminMenu,
    ListRequests,
    StuckRequests,
    ViewRequest,
    ViewStuckRequest,
    ViewProfile,
    QuickGrant,
    StartApproval,
    SetDeviceLimit,
    BackToDevices,
    SetExpiry,
    BackToExpiry,
    ConfirmGrant,
    CancelWizard,
    DenyRequest,
    BanRequest,
    ReopenRequest,
    ShowStats,
    ShowRecentUsers,
    ShowClients,
)

COMMANDS_BY_TAG: Dict[str, Type[Command]] = {cls.tag: cls for cls in COMMAND_TYPES}


def encode_callback(command: Command) -> str:
    parts = [command.tag] + [str(getattr(command, f.name)) for f in fields(command)]
    return ":".join(parts)


def decode_callback(token: str) -> Command:
    """
    Parse a callback token into its command.

    Raises:
        ValueError: unknown tag, wrong number of arguments or malformed argument
    """
    if not token:
        raise ValueError("Empty callback token")
    tag, *args = token.split(":")
    command_cls = COMMANDS_BY_TAG.get(tag)
    if command_cls is None:
        raise ValueError(f"Unknown callback tag: {tag!r}")

    command_fields = fields(command_cls)
    if len(args) != len(command_fields):
        raise ValueError(
            f"Callback {tag!r} expects {len(command_fields)} argument(s), got {len(args)}"
        )
    values = {}
    for field, raw in zip(command_fields, args):
        if not raw:
            raise ValueError(f"Empty argument {field.name!r} in callback {tag!r}")
        values[field.name] = int(raw) if field.type is int else raw
    return command_cls(**values)
