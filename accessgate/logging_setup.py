"""
Root logging for the bot: a rotating log file plus stdout.

bot_settings.debug_mode forces DEBUG; otherwise bot_settings.log_level applies.
main.py calls setup_logging() before anything else logs.
"""

import logging
import logging.handlers
import os
import sys

from accessgate.config import get_config_value

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5


def _resolve_log_level() -> int:
    if get_config_value("bot_settings.debug_mode", False):
        return logging.DEBUG
    level_name = str(get_config_value("bot_settings.log_level", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def _log_file_path() -> str:
    name = get_config_value("bot_settings.log_file_name", "accessgate.log")
    if not isinstance(name, str) or not name:
        name = "accessgate.log"
    directory = os.path.dirname(name)
    if directory:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            print(f"Cannot create log directory {directory} ({e}); logging to ./", file=sys.stderr)
            return os.path.basename(name)
    return name


def setup_logging() -> None:
    level = _resolve_log_level()
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    log_file = _log_file_path()
    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    except OSError as e:
        print(f"File logging disabled, cannot open {log_file}: {e}", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(max(level, logging.INFO))

    root.info(f"Logging ready: level={logging.getLevelName(level)} file={log_file}")
