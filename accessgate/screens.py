"""Builders for every screen and notification the bot shows."""

import datetime
from typing import List, Optional

from accessgate.callbacks import (
    AdminMenu,
    BackToDevices,
    BackToExpiry,
    BanRequest,
    CancelWizard,
    ConfirmGrant,
    DenyRequest,
    GetProfile,
    HowTo,
    ListRequests,
    QuickGrant,
    ReopenRequest,
    RequestAccess,
    SetDeviceLimit,
    SetExpiry,
    ShowClients,
    ShowRecentUsers,
    ShowStats,
    StartApproval,
    StuckRequests,
    ViewProfile,
    ViewRequest,
    ViewStuckRequest,
)
from accessgate.messaging import get_message
from accessgate.models import AdminSession, Grant, RequestStatus, RequestView, User, UserStatus
from accessgate.proxy import ProxyLinks
from accessgate.reports import ClientsPage, Stats, is_active_client
from accessgate.transport import MAX_BUTTONS_PER_ROW, MAX_ROWS, Button, Keyboard, Screen

# Discord embed descriptions are capped at 4096 characters
MAX_TEXT_LENGTH = 4000

# Request buttons share all rows but the last, which is kept for "back"
MAX_LISTED_REQUESTS = (MAX_ROWS - 1) * MAX_BUTTONS_PER_ROW

STATUS_ICONS = {
    UserStatus.NEW: "🆕",
    UserStatus.PENDING: "⏳",
    UserStatus.APPROVED: "✅",
    UserStatus.DENIED: "❌",
    UserStatus.BANNED: "🚫",
    UserStatus.REVOKED: "🔒",
}


# ---------- formatting ----------


def _clip(text: str) -> str:
    if len(text) <= MAX_TEXT_LENGTH:
        return text
    return text[: MAX_TEXT_LENGTH - 1] + "…"


def fmt_limit(device_limit: int) -> str:
    return "∞" if device_limit == 0 else str(device_limit)


def fmt_expiry_days(expires_days: int) -> str:
    if expires_days == 0:
        return get_message("common.no_expiry")
    return get_message("common.days", days=expires_days)


def fmt_date(ts: int) -> str:
    return datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc).strftime(
        "%Y-%m-%d"
    )


def fmt_datetime(ts: int) -> str:
    return datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc).strftime(
        "%Y-%m-%d %H:%M UTC"
    )


def fmt_age(seconds: int) -> str:
    if seconds >= 3600:
        return get_message("common.age_hours", hours=seconds // 3600)
    return get_message("common.age_minutes", minutes=max(1, seconds // 60))


def user_card(user: User, now: int) -> str:
    lines = [
        f"{STATUS_ICONS.get(user.status, '❓')} {user.label} | id:{user.user_id}",
        get_message("cards.status", status=user.status.value),
    ]
    if user.status == UserStatus.APPROVED:
        lines.append(get_message("cards.device_limit", limit=fmt_limit(user.device_limit)))
        lines.append(get_message("cards.devices_used", used=user.devices_used))
        if user.expires_at:
            days_left = -(-(user.expires_at - now) // 86400)
            lines.append(
                get_message(
                    "cards.expires_at", date=fmt_date(user.expires_at), days_left=days_left
                )
            )
        else:
            lines.append(get_message("cards.no_expiry"))
    lines.append(get_message("cards.registered", date=fmt_date(user.created_at)))
    return "\n".join(lines)


def _back_to_admin_menu() -> List[Button]:
    return [Button(get_message("buttons.to_admin_menu"), AdminMenu())]


def _with_ps(text: str, ps: str) -> str:
    return f"{text}\n\n{ps}" if ps else text


# ---------- user side ----------


def user_menu_keyboard(approved: bool) -> Keyboard:
    if not approved:
        return [[Button(get_message("buttons.request_access"), RequestAccess(), style="primary")]]
    return [
        [
            Button(get_message("buttons.turbo"), GetProfile("turbo"), style="primary"),
            Button(get_message("buttons.stable"), GetProfile("stable")),
        ],
        [Button(get_message("buttons.both_profiles"), GetProfile("both"))],
        [Button(get_message("buttons.howto"), HowTo())],
    ]


def start_screen(approved: bool, ps: str = "") -> Screen:
    key = "user_menu.start_approved" if approved else "user_menu.start_new"
    return Screen(
        text=_with_ps(get_message(key), ps),
        keyboard=user_menu_keyboard(approved),
        title=get_message("user_menu.title"),
    )


def access_active_screen(ps: str = "") -> Screen:
    return Screen(
        text=_with_ps(get_message("user_menu.access_active"), ps),
        keyboard=user_menu_keyboard(True),
        title=get_message("user_menu.title"),
        color_type="success",
    )


def access_closed_screen() -> Screen:
    return Screen(text=get_message("user_menu.access_closed"), color_type="error")


def request_sent_screen() -> Screen:
    return Screen(
        text=get_message("user_menu.request_sent"),
        keyboard=user_menu_keyboard(False),
        title=get_message("user_menu.title"),
    )


def request_already_pending_screen() -> Screen:
    return Screen(
        text=get_message("user_menu.request_already_pending"),
        keyboard=user_menu_keyboard(False),
        title=get_message("user_menu.title"),
    )


def profile_screen(kind: str, links: ProxyLinks, ps: str = "") -> Screen:
    if kind == "turbo":
        text = get_message("profiles.turbo")
        keyboard = [
            [Button(get_message("buttons.connect_turbo"), url=links.turbo_url)],
            [Button(get_message("buttons.both_profiles"), GetProfile("both"))],
        ]
    elif kind == "stable":
        text = get_message("profiles.stable")
        keyboard = [
            [Button(get_message("buttons.connect_stable"), url=links.stable_url)],
            [Button(get_message("buttons.both_profiles"), GetProfile("both"))],
        ]
    else:
        text = get_message("profiles.both")
        keyboard = [
            [Button(get_message("buttons.connect_turbo"), url=links.turbo_url)],
            [Button(get_message("buttons.connect_stable"), url=links.stable_url)],
            [Button(get_message("buttons.which_one"), HowTo())],
        ]
    return Screen(
        text=_with_ps(text, ps),
        keyboard=keyboard,
        title=get_message("profiles.title"),
        color_type="success",
    )


def diagnostics_screen(links: ProxyLinks, turbo_port: str) -> Screen:
    if str(turbo_port) == "443":
        recommendation = get_message("profiles.diag_stable_default")
    else:
        recommendation = get_message("profiles.diag_turbo_first", port=turbo_port)
    return Screen(
        text=get_message("profiles.diag", recommendation=recommendation),
        keyboard=[
            [Button(get_message("buttons.connect_turbo"), url=links.turbo_url)],
            [Button(get_message("buttons.connect_stable"), url=links.stable_url)],
        ],
        title=get_message("profiles.diag_title"),
    )


def howto_screen(approved: bool) -> Screen:
    return Screen(
        text=get_message("user_menu.howto"),
        keyboard=user_menu_keyboard(approved),
        title=get_message("user_menu.howto_title"),
    )


# ---------- operator panel ----------


def admin_menu_keyboard() -> Keyboard:
    return [
        [Button(get_message("buttons.list_requests"), ListRequests())],
        [Button(get_message("buttons.stuck_requests"), StuckRequests())],
        [Button(get_message("buttons.stats"), ShowStats())],
        [Button(get_message("buttons.clients"), ShowClients(1))],
    ]


def admin_menu_screen(text: Optional[str] = None, color_type: str = "info") -> Screen:
    return Screen(
        text=text or get_message("admin.menu"),
        keyboard=admin_menu_keyboard(),
        title=get_message("admin.title"),
        color_type=color_type,
    )


def _request_list_keyboard(buttons: List[Button], lines: List[str]) -> Keyboard:
    """Pack request buttons into rows and append the back row; overflow is noted in lines."""
    shown = buttons[:MAX_LISTED_REQUESTS]
    if len(buttons) > len(shown):
        lines.append("")
        lines.append(get_message("admin.more_pending", count=len(buttons) - len(shown)))
    keyboard: Keyboard = [
        shown[i : i + MAX_BUTTONS_PER_ROW] for i in range(0, len(shown), MAX_BUTTONS_PER_ROW)
    ]
    keyboard.append(_back_to_admin_menu())
    return keyboard


def request_list_screen(views: List[RequestView]) -> Screen:
    if not views:
        return admin_menu_screen(get_message("admin.no_pending"))
    lines = [get_message("admin.pending_header", count=len(views)), ""]
    buttons: List[Button] = []
    for view in views:
        lines.append(f"• {view.user.label} | {fmt_datetime(view.request.created_at)}")
        buttons.append(Button(f"👤 {view.user.label}"[:80], ViewRequest(view.request.request_id)))
    keyboard = _request_list_keyboard(buttons, lines)
    return Screen(text=_clip("\n".join(lines)), keyboard=keyboard, title=get_message("admin.title"))


def stuck_list_screen(
    stuck: List[RequestView], fresh: List[RequestView], now: int, threshold_minutes: int
) -> Screen:
    """All pending requests, oldest first, with the stuck ones marked."""
    total = len(stuck) + len(fresh)
    lines = [
        get_message(
            "admin.stuck_header",
            total=total,
            stuck=len(stuck),
            threshold=fmt_age(threshold_minutes * 60),
        ),
        "",
    ]
    if total == 0:
        lines.append(get_message("admin.no_pending"))
        return admin_menu_screen("\n".join(lines))

    buttons: List[Button] = []
    marked = [(view, True) for view in stuck] + [(view, False) for view in fresh]
    for view, is_stuck in marked:
        age = fmt_age(now - view.request.created_at)
        icon = "🔧" if is_stuck else "🆕"
        lines.append(f"• {view.user.label} | {age}")
        buttons.append(
            Button(f"{icon} {view.user.label} ({age})"[:80], ViewStuckRequest(view.request.request_id))
        )
    keyboard = _request_list_keyboard(buttons, lines)
    return Screen(text=_clip("\n".join(lines)), keyboard=keyboard, title=get_message("admin.title"))


def request_card_screen(view: RequestView, now: int, quick_grant_device_limit: int) -> Screen:
    request = view.request
    text = get_message(
        "admin.request_card",
        short_id=request.short_id,
        card=user_card(view.user, now),
        created=fmt_datetime(request.created_at),
    )
    if request.status != RequestStatus.PENDING:
        text += "\n\n" + get_message("admin.request_processed", status=request.status.value)
        return admin_menu_screen(text, color_type="warning")
    rid = request.request_id
    keyboard = [
        [
            Button(
                get_message("buttons.quick_grant", limit=quick_grant_device_limit),
                QuickGrant(rid),
                style="success",
            )
        ],
        [
            Button(get_message("buttons.approve_custom"), StartApproval(rid), style="primary"),
            Button(get_message("buttons.deny"), DenyRequest(rid), style="danger"),
        ],
        [
            Button(get_message("buttons.ban"), BanRequest(rid), style="danger"),
            Button(get_message("buttons.profile"), ViewProfile(rid)),
        ],
        [Button(get_message("buttons.to_requests"), ListRequests())],
    ]
    return Screen(text=text, keyboard=keyboard, title=get_message("admin.title"))


def stuck_card_screen(view: RequestView, now: int) -> Screen:
    request = view.request
    text = get_message(
        "admin.stuck_card",
        short_id=request.short_id,
        card=user_card(view.user, now),
        age=fmt_age(now - request.created_at),
    )
    if request.status != RequestStatus.PENDING:
        text += "\n\n" + get_message("admin.request_processed", status=request.status.value)
        return admin_menu_screen(text, color_type="warning")
    rid = request.request_id
    keyboard = [
        [
            Button(get_message("buttons.approve"), StartApproval(rid), style="primary"),
            Button(get_message("buttons.deny"), DenyRequest(rid), style="danger"),
        ],
        [
            Button(get_message("buttons.ban"), BanRequest(rid), style="danger"),
            Button(get_message("buttons.reopen"), ReopenRequest(rid)),
        ],
        [Button(get_message("buttons.to_stuck"), StuckRequests())],
    ]
    return Screen(text=text, keyboard=keyboard, title=get_message("admin.title"), color_type="warning")


def profile_card_screen(view: RequestView, now: int) -> Screen:
    text = get_message(
        "admin.profile_card",
        card=user_card(view.user, now),
        short_id=view.request.short_id,
    )
    keyboard = [
        [Button(get_message("buttons.to_request"), ViewRequest(view.request.request_id))],
        _back_to_admin_menu(),
    ]
    return Screen(text=text, keyboard=keyboard, title=get_message("admin.title"))


# ---------- wizard ----------


def device_picker_screen(request_id: str, session: Optional[AdminSession] = None) -> Screen:
    keyboard = [
        [
            Button(f"{n} 📱", SetDeviceLimit(request_id, n))
            for n in (1, 2, 3, 5)
        ],
        [
            Button("10 📱", SetDeviceLimit(request_id, 10)),
            Button("∞", SetDeviceLimit(request_id, 0)),
        ],
        [Button(get_message("buttons.cancel"), CancelWizard(request_id), style="danger")],
    ]
    text = get_message("wizard.step_devices", short_id=request_id[:8])
    if session is not None:
        text += "\n" + get_message(
            "wizard.current_values",
            limit=fmt_limit(session.device_limit),
            expiry=fmt_expiry_days(session.expires_days),
        )
    return Screen(text=text, keyboard=keyboard, title=get_message("wizard.title"))


def expiry_picker_screen(request_id: str, session: AdminSession) -> Screen:
    keyboard = [
        [
            Button(fmt_expiry_days(d), SetExpiry(request_id, d))
            for d in (7, 30, 90)
        ],
        [
            Button(fmt_expiry_days(365), SetExpiry(request_id, 365)),
            Button(fmt_expiry_days(0) + " ♾️", SetExpiry(request_id, 0)),
        ],
        [Button(get_message("buttons.back_to_limit"), BackToDevices(request_id))],
        [Button(get_message("buttons.cancel"), CancelWizard(request_id), style="danger")],
    ]
    text = get_message(
        "wizard.step_expiry", limit=fmt_limit(session.device_limit)
    )
    return Screen(text=text, keyboard=keyboard, title=get_message("wizard.title"))


def confirm_screen(session: AdminSession) -> Screen:
    rid = session.request_id
    limit = fmt_limit(session.device_limit)
    expiry = fmt_expiry_days(session.expires_days)
    keyboard = [
        [
            Button(
                get_message("buttons.confirm", limit=limit, expiry=expiry),
                ConfirmGrant(rid),
                style="success",
            )
        ],
        [Button(get_message("buttons.change_limit"), BackToDevices(rid))],
        [Button(get_message("buttons.change_expiry"), BackToExpiry(rid))],
        [Button(get_message("buttons.cancel"), CancelWizard(rid), style="danger")],
    ]
    text = get_message("wizard.step_confirm", limit=limit, expiry=expiry)
    return Screen(text=text, keyboard=keyboard, title=get_message("wizard.title"))


def granted_screen(grant: Grant, quick: bool = False) -> Screen:
    key = "wizard.quick_granted" if quick else "wizard.granted"
    return admin_menu_screen(
        get_message(
            key,
            limit=fmt_limit(grant.device_limit),
            expiry=fmt_expiry_days(grant.expires_days),
        ),
        color_type="success",
    )


def cancelled_screen() -> Screen:
    return admin_menu_screen(get_message("wizard.cancelled"))


def denied_screen() -> Screen:
    return admin_menu_screen(get_message("admin.denied"))


def banned_screen() -> Screen:
    return admin_menu_screen(get_message("admin.banned"), color_type="error")


def reopened_screen(new_request_id: str) -> Screen:
    return admin_menu_screen(get_message("admin.reopened", short_id=new_request_id[:8]))


# ---------- reports ----------


def stats_screen(stats: Stats, expiring_soon_days: int) -> Screen:
    text = get_message(
        "reports.stats",
        total=stats.total_users,
        approved=stats.approved,
        pending=stats.pending_requests,
        denied=stats.denied,
        banned=stats.banned,
        expiring_soon=stats.expiring_soon,
        days=expiring_soon_days,
    )
    keyboard = [
        [Button(get_message("buttons.recent_users"), ShowRecentUsers())],
        [Button(get_message("buttons.clients"), ShowClients(1))],
        _back_to_admin_menu(),
    ]
    return Screen(text=text, keyboard=keyboard, title=get_message("reports.stats_title"))


def recent_users_screen(users: List[User]) -> Screen:
    if not users:
        return admin_menu_screen(get_message("reports.no_users"))
    lines = [get_message("reports.recent_users_header", count=len(users)), ""]
    buttons: List[Button] = []
    for user in users:
        icon = {UserStatus.APPROVED: "✅", UserStatus.PENDING: "⏳"}.get(user.status, "•")
        lines.append(f"{icon} {user.label} | id:{user.user_id}")
        buttons.append(
            Button(f"{icon} {user.label}"[:80], url=f"https://discord.com/users/{user.user_id}")
        )
    # Only the first rows fit in a message; the text lists everyone
    keyboard: Keyboard = [buttons[i : i + 5] for i in range(0, min(len(buttons), 20), 5)]
    keyboard.append([Button(get_message("buttons.to_stats"), ShowStats())])
    return Screen(text=_clip("\n".join(lines)), keyboard=keyboard, title=get_message("reports.stats_title"))


def clients_screen(page: ClientsPage, now: int) -> Screen:
    lines = [
        get_message(
            "reports.clients_header", active=page.active_count, expired=page.expired_count
        ),
        "",
    ]
    if not page.users:
        lines.append(get_message("reports.no_clients"))
        return admin_menu_screen("\n".join(lines))

    lines.append(get_message("reports.page", page=page.page, total=page.total_pages))
    lines.append("")
    for user in page.users:
        icon = "✅" if is_active_client(user, now) else "⌛"
        expiry = fmt_date(user.expires_at) if user.expires_at else get_message("common.no_expiry")
        lines.append(f"{icon} {user.label} | id:{user.user_id}")
        lines.append(
            get_message(
                "reports.client_line",
                used=user.devices_used,
                limit=fmt_limit(user.device_limit),
                expiry=expiry,
            )
        )

    keyboard: Keyboard = []
    nav = []
    if page.page > 1:
        nav.append(Button(get_message("buttons.prev_page"), ShowClients(page.page - 1)))
    if page.page < page.total_pages:
        nav.append(Button(get_message("buttons.next_page"), ShowClients(page.page + 1)))
    if nav:
        keyboard.append(nav)
    keyboard.append([Button(get_message("buttons.refresh"), ShowClients(page.page))])
    keyboard.append(_back_to_admin_menu())
    return Screen(text=_clip("\n".join(lines)), keyboard=keyboard, title=get_message("reports.clients_title"))


# ---------- notifications ----------


def grant_notice(grant: Grant, ps: str = "") -> Screen:
    text = get_message(
        "notifications.granted",
        limit=fmt_limit(grant.device_limit),
        expiry=fmt_expiry_days(grant.expires_days),
    )
    return Screen(text=_with_ps(text, ps), color_type="success")


def deny_notice() -> Screen:
    return Screen(text=get_message("notifications.denied"), color_type="error")


def ban_notice() -> Screen:
    return Screen(text=get_message("notifications.banned"), color_type="error")


def reopen_notice() -> Screen:
    return Screen(text=get_message("notifications.reopened"))


def operator_new_request_notice(user: User, request_id: str) -> Screen:
    return Screen(
        text=get_message("notifications.operator_new_request", user=user.label, user_id=user.user_id),
        keyboard=[[Button(get_message("buttons.open_request"), ViewRequest(request_id), style="primary")]],
        color_type="warning",
    )


def operator_repinged_notice(user: User, request_id: str) -> Screen:
    return Screen(
        text=get_message(
            "notifications.operator_repinged",
            user=user.label,
            user_id=user.user_id,
            short_id=request_id[:8],
        ),
        keyboard=[[Button(get_message("buttons.open_request"), ViewRequest(request_id), style="primary")]],
        color_type="warning",
    )
