"""Main entry point for the application."""

import logging
import sys

from accessgate.bot import AccessGateBot, register_event_handlers
from accessgate.commands.admin_commands import setup_commands as setup_admin_commands
from accessgate.commands.user_commands import setup_commands as setup_user_commands

from accessgate.config import get_config_value, get_operator_id, validate_config
from accessgate.logging_setup import setup_logging

# Setup logging first
setup_logging()

# Get the main logger
logger = logging.getLogger(__name__)

# Validate configuration
validate_config()

if __name__ == "__main__":
    try:
        logger.info("Starting AccessGate Discord Bot")

        discord_token = get_config_value("discord.token")
        operator_id = get_operator_id()

        if not discord_token or not operator_id:
            logger.critical(
                "Missing Discord token or operator id. Please check your config.yaml and .env file."
            )
            sys.exit(1)

        bot = AccessGateBot(operator_id)

        register_event_handlers(bot)

        setup_user_commands(bot)
        logger.debug("User commands setup.")
        setup_admin_commands(bot)
        logger.debug("Admin commands setup.")

        bot.run(discord_token, log_handler=None)
    except Exception as e:
        logger.critical(f"Failed to start bot: {e}", exc_info=True)
        sys.exit(1)
