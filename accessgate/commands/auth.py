"""Authorization check for operator slash commands."""

import logging

import discord
from discord import app_commands

from accessgate.config import get_operator_id
from accessgate.messaging import get_message

logger = logging.getLogger(__name__)


def is_operator():
    """Allow the command only for the configured operator account."""

    async def predicate(interaction: discord.Interaction) -> bool:
        check_logger = logger
        try:
            operator_id = get_operator_id()
            if operator_id and interaction.user.id == operator_id:
                check_logger.debug(
                    f"Operator check passed for '{interaction.command.name if interaction.command else 'Unknown'}'."
                )
                return True

            check_logger.warning(
                f"Operator check failed for user {interaction.user} ({interaction.user.id}) on command '{interaction.command.name if interaction.command else 'Unknown'}'."
            )
            await interaction.response.send_message(
                get_message("errors.unauthorized"), ephemeral=True
            )
            return False
        except Exception as e:
            check_logger.error(
                f"Error during operator check for user {interaction.user}: {str(e)}",
                exc_info=True,
            )
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    get_message("errors.generic"), ephemeral=True
                )
            return False

    return app_commands.check(predicate)


async def operator_command_error(
    interaction: discord.Interaction, error: app_commands.AppCommandError
):
    """Shared error handler for operator slash commands."""
    err_logger = logger.getChild("operator_command.error")
    try:
        if isinstance(error, app_commands.errors.CheckFailure):
            err_logger.debug(f"CheckFailure suppressed for user {interaction.user}: {error}")
        else:
            err_logger.error(
                f"Unhandled AppCommandError: {type(error).__name__} - {str(error)}",
                exc_info=True,
            )
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    get_message("errors.generic"), ephemeral=True
                )
    except Exception as e:
        err_logger.critical(
            f"CRITICAL: Error within operator command error handler: {str(e)}",
            exc_info=True,
        )
