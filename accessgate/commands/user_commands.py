"""End-user actions: start menu, access requests and connection profiles."""

import asyncio
import logging
from typing import TYPE_CHECKING

import discord

from accessgate import screens
from accessgate.callbacks import GetProfile, HowTo, RequestAccess
from accessgate.config import get_config_value
from accessgate.errors import AccessExpiredOrAbsent, UserBanned
from accessgate.messaging import get_message
from accessgate.models import UserStatus
from accessgate.transport import InboundEvent

if TYPE_CHECKING:
    from accessgate.app import AccessGateApp

logger = logging.getLogger(__name__)


async def show_start(app: "AccessGateApp", event: InboundEvent) -> None:
    user = await asyncio.to_thread(app.db.get_user, event.user_id)
    if user is not None and user.status == UserStatus.BANNED:
        await app.show(event, screens.access_closed_screen())
        return
    approved = app.evaluator.is_approved(user)
    ps = await asyncio.to_thread(app.pick_variant, event.user_id, "start")
    await app.show(event, screens.start_screen(approved, ps))


async def request_access(app: "AccessGateApp", event: InboundEvent, command: RequestAccess) -> None:
    log = logger.getChild("request_access")
    user = await asyncio.to_thread(app.db.get_user, event.user_id)
    if user.status == UserStatus.BANNED:
        raise UserBanned(f"user {event.user_id}")
    if app.evaluator.is_approved(user):
        await app.ack(event, get_message("notices.already_approved"))
        return

    request_id, already_pending = await asyncio.to_thread(
        app.requests.create_request, event.user_id
    )
    user = await asyncio.to_thread(app.db.get_user, event.user_id)

    if already_pending:
        log.info(f"User {event.user_id} asked again for pending request {request_id}")
        await app.ack(event, get_message("notices.already_pending"))
        await app.notify(app.operator_id, screens.operator_repinged_notice(user, request_id))
        await app.show(event, screens.request_already_pending_screen())
        return

    log.info(f"User {event.user_id} opened request {request_id}")
    await app.ack(event, get_message("notices.request_sent"))
    await app.show(event, screens.request_sent_screen())
    await app.notify(app.operator_id, screens.operator_new_request_notice(user, request_id))


async def get_profile(app: "AccessGateApp", event: InboundEvent, command: GetProfile) -> None:
    user = await asyncio.to_thread(app.db.get_user, event.user_id)
    if not app.evaluator.is_approved(user):
        raise AccessExpiredOrAbsent(f"user {event.user_id}")
    # Resolved before the device slot is consumed
    links = app.proxy_links()
    await asyncio.to_thread(app.evaluator.authorize_privileged, event.user_id)
    ps = await asyncio.to_thread(app.pick_variant, event.user_id, "end")
    await app.ack(event, get_message("notices.ok"))
    await app.show(event, screens.profile_screen(command.kind, links, ps))


async def show_diagnostics(app: "AccessGateApp", event: InboundEvent) -> None:
    user = await asyncio.to_thread(app.db.get_user, event.user_id)
    if not app.evaluator.is_approved(user):
        raise AccessExpiredOrAbsent(f"user {event.user_id}")
    links = app.proxy_links()
    await asyncio.to_thread(app.evaluator.authorize_privileged, event.user_id)
    turbo_port = str(get_config_value("proxy.port", "443"))
    await app.show(event, screens.diagnostics_screen(links, turbo_port))


async def howto(app: "AccessGateApp", event: InboundEvent, command: HowTo) -> None:
    user = await asyncio.to_thread(app.db.get_user, event.user_id)
    await app.show(event, screens.howto_screen(app.evaluator.is_approved(user)))


CALLBACK_HANDLERS = {
    RequestAccess: request_access,
    GetProfile: get_profile,
    HowTo: howto,
}


def setup_commands(bot) -> None:
    """Register the end-user slash commands on the bot's command tree."""

    @bot.tree.command(name="start", description="Open the access menu")
    async def start_command(interaction: discord.Interaction):
        await bot.run_guarded(interaction, "start", show_start)

    @bot.tree.command(name="turbo", description="Get the TURBO connection profile")
    async def turbo_command(interaction: discord.Interaction):
        await bot.run_command(interaction, GetProfile("turbo"))

    @bot.tree.command(name="stable", description="Get the STABLE connection profile")
    async def stable_command(interaction: discord.Interaction):
        await bot.run_command(interaction, GetProfile("stable"))

    @bot.tree.command(name="safe", description="Get both connection profiles")
    async def safe_command(interaction: discord.Interaction):
        await bot.run_command(interaction, GetProfile("both"))

    @bot.tree.command(name="diag", description="Which connection profile to use right now")
    async def diag_command(interaction: discord.Interaction):
        await bot.run_guarded(interaction, "diag", show_diagnostics)

    logger.info("User commands registered.")
