"""Operator panel: request review, the grant wizard and reports."""

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from accessgate import reports, screens
from accessgate.callbacks import (
    AdminMenu,
    BackToDevices,
    BackToExpiry,
    BanRequest,
    CancelWizard,
    ConfirmGrant,
    DenyRequest,
    ListRequests,
    QuickGrant,
    ReopenRequest,
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
from accessgate.commands.auth import is_operator, operator_command_error
from accessgate.errors import NotFound
from accessgate.messaging import get_message
from accessgate.models import Grant, RequestStatus, UserStatus
from accessgate.transport import InboundEvent

if TYPE_CHECKING:
    from accessgate.app import AccessGateApp

logger = logging.getLogger(__name__)


async def _require_view(app: "AccessGateApp", request_id: str):
    view = await asyncio.to_thread(app.requests.get_view, request_id)
    if view is None:
        raise NotFound(f"request {request_id}")
    return view


async def deliver_grant(app: "AccessGateApp", grant: Grant) -> None:
    """Tell the user about a committed grant and switch their menu to the approved one."""
    try:
        user = await asyncio.to_thread(app.db.get_user, grant.user_id)
        if user is not None and user.status == UserStatus.BANNED:
            logger.getChild("deliver_grant").info(
                f"User {grant.user_id} was banned while request {grant.request_id} was being granted; no notice sent"
            )
            return
        end_ps = await asyncio.to_thread(app.pick_variant, grant.user_id, "end")
        await app.notify(grant.user_id, screens.grant_notice(grant, end_ps))
        start_ps = await asyncio.to_thread(app.pick_variant, grant.user_id, "start")
        await app.renderer.render(grant.user_id, screens.access_active_screen(start_ps))
    except Exception as e:
        logger.getChild("deliver_grant").error(
            f"Grant for request {grant.request_id} committed but delivery to user {grant.user_id} failed: {e}",
            exc_info=True,
        )


# ---------- panel ----------


async def admin_menu(app: "AccessGateApp", event: InboundEvent, command: AdminMenu) -> None:
    await app.show(event, screens.admin_menu_screen())


async def list_requests(app: "AccessGateApp", event: InboundEvent, command: ListRequests) -> None:
    views = await asyncio.to_thread(
        app.requests.list_by_status, RequestStatus.PENDING, True
    )
    await app.show(event, screens.request_list_screen(views))


async def stuck_requests(app: "AccessGateApp", event: InboundEvent, command: StuckRequests) -> None:
    now = app.clock()
    stuck, fresh = await asyncio.to_thread(
        app.requests.partition_stuck, app.stuck_request_age_minutes * 60, now
    )
    await app.show(
        event,
        screens.stuck_list_screen(stuck, fresh, now, app.stuck_request_age_minutes),
    )


async def view_request(app: "AccessGateApp", event: InboundEvent, command: ViewRequest) -> None:
    view = await _require_view(app, command.request_id)
    await app.show(
        event,
        screens.request_card_screen(view, app.clock(), app.quick_grant_device_limit),
    )


async def view_stuck_request(
    app: "AccessGateApp", event: InboundEvent, command: ViewStuckRequest
) -> None:
    view = await _require_view(app, command.request_id)
    await app.show(event, screens.stuck_card_screen(view, app.clock()))


async def view_profile(app: "AccessGateApp", event: InboundEvent, command: ViewProfile) -> None:
    view = await _require_view(app, command.request_id)
    await app.show(event, screens.profile_card_screen(view, app.clock()))


# ---------- wizard ----------


async def quick_grant(app: "AccessGateApp", event: InboundEvent, command: QuickGrant) -> None:
    grant = await asyncio.to_thread(
        app.wizard.quick_grant, command.request_id, event.user_id
    )
    await app.ack(event, get_message("notices.granted"))
    await app.show(event, screens.granted_screen(grant, quick=True))
    await deliver_grant(app, grant)


async def start_approval(app: "AccessGateApp", event: InboundEvent, command: StartApproval) -> None:
    session = await asyncio.to_thread(app.wizard.start, command.request_id, event.user_id)
    await app.ack(event, get_message("notices.wizard_started"))
    await app.show(event, screens.device_picker_screen(command.request_id, session))


async def set_device_limit(
    app: "AccessGateApp", event: InboundEvent, command: SetDeviceLimit
) -> None:
    session = await asyncio.to_thread(
        app.wizard.set_device_limit,
        command.request_id,
        event.user_id,
        command.device_limit,
    )
    await app.show(event, screens.expiry_picker_screen(command.request_id, session))


async def back_to_devices(app: "AccessGateApp", event: InboundEvent, command: BackToDevices) -> None:
    session = await asyncio.to_thread(
        app.wizard.back_to_devices, command.request_id, event.user_id
    )
    await app.show(event, screens.device_picker_screen(command.request_id, session))


async def set_expiry(app: "AccessGateApp", event: InboundEvent, command: SetExpiry) -> None:
    session = await asyncio.to_thread(
        app.wizard.set_expiry, command.request_id, event.user_id, command.expires_days
    )
    await app.show(event, screens.confirm_screen(session))


async def back_to_expiry(app: "AccessGateApp", event: InboundEvent, command: BackToExpiry) -> None:
    session = await asyncio.to_thread(
        app.wizard.back_to_expiry, command.request_id, event.user_id
    )
    await app.show(event, screens.expiry_picker_screen(command.request_id, session))


async def confirm_grant(app: "AccessGateApp", event: InboundEvent, command: ConfirmGrant) -> None:
    grant = await asyncio.to_thread(app.wizard.confirm, command.request_id, event.user_id)
    await app.ack(event, get_message("notices.granted"))
    await app.show(event, screens.granted_screen(grant))
    await deliver_grant(app, grant)


async def cancel_wizard(app: "AccessGateApp", event: InboundEvent, command: CancelWizard) -> None:
    await asyncio.to_thread(app.wizard.cancel, command.request_id, event.user_id)
    await app.ack(event, get_message("notices.cancelled"))
    await app.show(event, screens.cancelled_screen())


# ---------- request actions ----------


async def deny_request(app: "AccessGateApp", event: InboundEvent, command: DenyRequest) -> None:
    request = await asyncio.to_thread(app.wizard.deny, command.request_id, event.user_id)
    await app.ack(event, get_message("notices.denied"))
    await app.show(event, screens.denied_screen())
    await app.notify(request.user_id, screens.deny_notice())


async def ban_request(app: "AccessGateApp", event: InboundEvent, command: BanRequest) -> None:
    request = await asyncio.to_thread(app.wizard.ban, command.request_id, event.user_id)
    await app.ack(event, get_message("notices.banned"))
    await app.show(event, screens.banned_screen())
    await app.notify(request.user_id, screens.ban_notice())


async def reopen_request(app: "AccessGateApp", event: InboundEvent, command: ReopenRequest) -> None:
    request = await asyncio.to_thread(app.requests.require, command.request_id)
    new_request_id = await asyncio.to_thread(
        app.wizard.reopen, command.request_id, event.user_id
    )
    await app.ack(event, get_message("notices.reopened"))
    await app.show(event, screens.reopened_screen(new_request_id))
    await app.notify(request.user_id, screens.reopen_notice())


# ---------- reports ----------


async def show_stats(app: "AccessGateApp", event: InboundEvent, command: ShowStats) -> None:
    stats = await asyncio.to_thread(
        reports.collect_stats, app.db, app.clock(), app.expiring_soon_days
    )
    await app.show(event, screens.stats_screen(stats, app.expiring_soon_days))


async def show_recent_users(
    app: "AccessGateApp", event: InboundEvent, command: ShowRecentUsers
) -> None:
    users = await asyncio.to_thread(reports.recent_users, app.db, app.recent_users_limit)
    await app.show(event, screens.recent_users_screen(users))


async def show_clients(app: "AccessGateApp", event: InboundEvent, command: ShowClients) -> None:
    now = app.clock()
    page = await asyncio.to_thread(
        reports.clients_page, app.db, command.page, app.clients_page_size, now
    )
    await app.show(event, screens.clients_screen(page, now))


# ---------- direct user management ----------


async def set_user_limit(
    app: "AccessGateApp", event: InboundEvent, target_user_id: int, device_limit: int
) -> None:
    user = await asyncio.to_thread(
        app.evaluator.set_device_limit, target_user_id, device_limit
    )
    await app.ack(
        event,
        get_message(
            "notices.limit_set", user=user.label, limit=screens.fmt_limit(user.device_limit)
        ),
    )


async def revoke_user(app: "AccessGateApp", event: InboundEvent, target_user_id: int) -> None:
    user = await asyncio.to_thread(app.evaluator.revoke, target_user_id)
    await app.ack(event, get_message("notices.revoked", user=user.label))


CALLBACK_HANDLERS = {
    AdminMenu: admin_menu,
    ListRequests: list_requests,
    StuckRequests: stuck_requests,
    ViewRequest: view_request,
    ViewStuckRequest: view_stuck_request,
    ViewProfile: view_profile,
    QuickGrant: quick_grant,
    StartApproval: start_approval,
    SetDeviceLimit: set_device_limit,
    BackToDevices: back_to_devices,
    SetExpiry: set_expiry,
    BackToExpiry: back_to_expiry,
    ConfirmGrant: confirm_grant,
    CancelWizard: cancel_wizard,
    DenyRequest: deny_request,
    BanRequest: ban_request,
    ReopenRequest: reopen_request,
    ShowStats: show_stats,
    ShowRecentUsers: show_recent_users,
    ShowClients: show_clients,
}


def setup_commands(bot):
    """Register the operator slash commands with the bot."""

    @bot.tree.command(name="admin", description="Open the operator panel")
    @is_operator()
    async def admin_command(interaction: discord.Interaction):
        await bot.run_command(interaction, AdminMenu())

    @bot.tree.command(name="stats", description="Access statistics")
    @is_operator()
    async def stats_command(interaction: discord.Interaction):
        await bot.run_command(interaction, ShowStats())

    @bot.tree.command(name="clients", description="Currently approved clients")
    @is_operator()
    async def clients_command(interaction: discord.Interaction):
        await bot.run_command(interaction, ShowClients(1))

    @bot.tree.command(name="setlimit", description="Set a user's device limit (0 = unlimited)")
    @app_commands.describe(user="The user to update", limit="New device limit, 0 for unlimited")
    @is_operator()
    async def setlimit_command(
        interaction: discord.Interaction,
        user: discord.User,
        limit: app_commands.Range[int, 0, 100],
    ):
        await bot.run_guarded(interaction, "setlimit", set_user_limit, user.id, limit)

    @bot.tree.command(name="revoke", description="Revoke a user's access")
    @app_commands.describe(user="The user whose access is revoked")
    @is_operator()
    async def revoke_command(interaction: discord.Interaction, user: discord.User):
        await bot.run_guarded(interaction, "revoke", revoke_user, user.id)

    for command in (admin_command, stats_command, clients_command, setlimit_command, revoke_command):
        command.error(operator_command_error)

    logger.info("Admin commands registered.")
