"""
Discord bot for the access approval workflow.

The client owns the command tree and translates Discord interactions into
InboundEvents for the AccessGateApp. Button presses arrive through
on_interaction: their custom_id is decoded into a typed command here, at the
boundary, and never reaches the core as a string.

Key components:
- AccessGateBot: discord.Client subclass holding the app, the transport and the command tree
- register_event_handlers: ready/error listeners
"""

import logging
from typing import Any

import discord
from discord import app_commands

from accessgate.app import AccessGateApp
from accessgate.callbacks import Command, decode_callback
from accessgate.config import get_config_value
from accessgate.database import Database
from accessgate.messaging import get_message
from accessgate.transport import DiscordTransport, InboundEvent


class AccessGateBot(discord.Client):
    """
    Discord client for AccessGate.

    Attributes:
        db: persistent store
        transport: DiscordTransport bound to this client
        app: the application service container
        tree: command tree for slash commands
    """

    def __init__(self, operator_id: int):
        self.logger = logging.getLogger(self.__class__.__name__)
        try:
            intents = discord.Intents.default()
            super().__init__(intents=intents)

            self.logger.info("Initializing Database...")
            db_file_path = get_config_value("bot_settings.db_file_name", "accessgate.db")
            self.db = Database(db_file_path)
            self.transport = DiscordTransport(self)
            self.app = AccessGateApp.from_config(self.db, self.transport, operator_id)
            self.logger.info("Initializing Command Tree...")
            self.tree = app_commands.CommandTree(self)
            self.logger.info(f"AccessGateBot initialized for operator {operator_id}.")
        except Exception as e:
            init_logger = getattr(self, "logger", logging.getLogger())
            init_logger.critical(
                f"Failed to initialize AccessGateBot: {str(e)}", exc_info=True
            )
            raise

    async def setup_hook(self):
        """Sweep stale wizard sessions once, then sync the global slash commands."""
        try:
            removed = self.app.reap_stale_sessions()
            self.logger.info(f"Startup sweep removed {removed} stale admin session(s)")
            synced = await self.tree.sync()
            self.logger.info(f"Synced {len(synced)} global application commands")
        except Exception as e:
            self.logger.error(f"Error during setup_hook: {str(e)}", exc_info=True)
            raise

    # ---------- interaction plumbing ----------

    def event_from_interaction(
        self, interaction: discord.Interaction, command: Any = None
    ) -> InboundEvent:
        user = interaction.user
        return InboundEvent(
            user_id=user.id,
            chat_id=user.id,
            username=user.name,
            display_name=getattr(user, "global_name", None) or user.display_name,
            callback_id=self.transport.register_interaction(interaction),
            command=command,
        )

    async def _defer(self, interaction: discord.Interaction) -> None:
        try:
            if interaction.type == discord.InteractionType.component:
                await interaction.response.defer()
            else:
                await interaction.response.defer(ephemeral=True, thinking=True)
        except Exception as e:
            self.transport.log_failure(f"deferring interaction {interaction.id}", e)

    async def run_command(self, interaction: discord.Interaction, command: Command) -> None:
        """Feed a typed command through the app as if its button had been pressed."""
        event = self.event_from_interaction(interaction, command)
        await self._defer(interaction)
        try:
            await self.app.handle_event(event)
        finally:
            await self.transport.finish_interaction(event.callback_id)

    async def run_guarded(
        self, interaction: discord.Interaction, action_name: str, handler, *args: Any
    ) -> None:
        event = self.event_from_interaction(interaction)
        await self._defer(interaction)
        try:
            await self.app.guarded(event, action_name, handler, *args)
        finally:
            await self.transport.finish_interaction(event.callback_id)

    async def on_interaction(self, interaction: discord.Interaction):
        """Handle button presses; slash commands are routed by the command tree."""
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        try:
            command = decode_callback(custom_id)
        except ValueError as e:
            self.logger.warning(
                f"Ignoring malformed callback '{custom_id}' from user {interaction.user.id}: {e}"
            )
            try:
                await interaction.response.send_message(
                    get_message("errors.invalid_choice"), ephemeral=True
                )
            except Exception as send_error:
                self.transport.log_failure("answering malformed callback", send_error)
            return
        await self.run_command(interaction, command)


def register_event_handlers(bot: AccessGateBot):
    """
    Register event handlers for the bot.

    Args:
        bot: The AccessGateBot instance to register handlers for
    """
    logger = logging.getLogger("EventHandlers")

    @bot.event
    async def on_ready():
        logger.info(f"Bot {bot.user} is ready and online!")

    @bot.event
    async def on_error(event_name, *args, **kwargs):
        logger.error(f"Unhandled error in event '{event_name}'", exc_info=True)

    logger.info("Event handlers registered.")
