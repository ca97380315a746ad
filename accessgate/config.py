"""
AccessGate settings.

Settings are resolved in three layers, later layers winning:

    DEFAULT_CONFIG_STRUCTURE  <  config.yaml  <  environment (.env included)

Environment overrides are named SECTION_KEY (ACCESS_SETTINGS_CLIENTS_PAGE_SIZE=10)
except for the secrets and the proxy address, which use the short names in
ENV_VAR_ALIASES. Everything else reads values through get_config_value.
"""

import json
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

APP_CONFIG: Dict[str, Any] = {}

DEFAULT_CONFIG_STRUCTURE = {
    "bot_settings": {
        "bot_name": "AccessGate",
        "log_file_name": "accessgate.log",
        "db_file_name": "accessgate.db",
        "debug_mode": False,
        "log_level": "INFO",
    },
    "discord": {
        "token": None,
        "operator_id": None,
    },
    "proxy": {
        "server": None,
        "port": "443",
        "stable_port": "443",
        "secret": None,
        "link_format": "https://t.me/proxy?server={server}&port={port}&secret={secret}",
    },
    "access_settings": {
        "stuck_request_age_minutes": 60,
        "session_max_age_hours": 24,
        "default_device_limit": 2,
        "default_expires_days": 30,
        "quick_grant_device_limit": 5,
        "clients_page_size": 8,
        "recent_users_limit": 80,
        "expiring_soon_days": 7,
    },
    "message_settings": {
        "templates_file": "message_templates.json",
        "embed_colors": {
            "success": "0x28a745",
            "error": "0xdc3545",
            "info": "0x17a2b8",
            "warning": "0xffc107",
        },
        "embed_footer_text": "{bot_name}",
        "bot_display_name_in_messages": "AccessGate",
    },
}

ENV_VAR_ALIASES = {
    ("discord", "token"): "DISCORD_TOKEN",
    ("discord", "operator_id"): "OPERATOR_ID",
    ("proxy", "secret"): "PROXY_SECRET",
    ("proxy", "server"): "PROXY_SERVER",
    ("proxy", "port"): "PROXY_PORT",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_name(section: str, key: str) -> str:
    return ENV_VAR_ALIASES.get((section, key), f"{section}_{key}".upper())


def _coerce(raw: str, like: Any) -> Any:
    """Convert an environment string to the type of the default it replaces."""
    if isinstance(like, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(like, int):
        return int(raw)
    if isinstance(like, dict):
        return json.loads(raw)
    return raw


def _read_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        logger.warning(
            f"No {path} found; running on defaults and environment variables only"
        )
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Cannot parse {path}: {e}")
        sys.exit(f"Critical error: {path} is not valid YAML.")
    if not isinstance(data, dict):
        sys.exit(f"Critical error: {path} must contain a mapping of sections.")
    logger.info(f"Loaded settings from {path}")
    return data


def load_app_config(path: str = "config.yaml") -> Dict[str, Any]:
    """Build APP_CONFIG from defaults, the YAML file and the environment."""
    global APP_CONFIG

    from_file = _read_yaml(path)
    config: Dict[str, Any] = {}
    for section, defaults in DEFAULT_CONFIG_STRUCTURE.items():
        file_section = from_file.get(section)
        if not isinstance(file_section, dict):
            file_section = {}
        config[section] = {key: file_section.get(key, value) for key, value in defaults.items()}

        for key, value in config[section].items():
            env_key = _env_name(section, key)
            raw = os.getenv(env_key)
            if raw is None:
                continue
            try:
                config[section][key] = _coerce(raw, defaults[key] if defaults[key] is not None else value)
            except ValueError:
                logger.warning(f"Ignoring {env_key}={raw!r}: not a valid {type(value).__name__}")
                continue
            logger.debug(f"{section}.{key} taken from {env_key}")

    APP_CONFIG = config
    return APP_CONFIG


load_app_config()


def get_config_value(path: str, default: Any = None) -> Any:
    """
    Look up a setting by dotted path.

    >>> get_config_value("access_settings.clients_page_size", 8)
    8
    """
    if not APP_CONFIG:
        load_app_config()

    node: Any = APP_CONFIG
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def get_operator_id() -> int:
    """The operator's Discord user id, 0 when unset or not a number."""
    raw = get_config_value("discord.operator_id")
    if raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"discord.operator_id '{raw}' is not a user id; no operator configured")
        return 0


# ---------- validation ----------


def _is_int(val: Any) -> bool:
    return isinstance(val, int) and not isinstance(val, bool)


def _is_text(val: Any) -> bool:
    # Discord ids and ports are often written unquoted in YAML
    return isinstance(val, (str, int)) and not isinstance(val, bool)


def _is_hex_color(val: Any) -> bool:
    if not isinstance(val, str) or not val.startswith("0x") or len(val) != 8:
        return False
    try:
        int(val, 16)
    except ValueError:
        return False
    return True


Check = Callable[[Any], Optional[str]]


def _positive(val: Any) -> Optional[str]:
    return None if _is_int(val) and val > 0 else "must be a positive integer"


def _non_negative(val: Any) -> Optional[str]:
    return None if _is_int(val) and val >= 0 else "must be a non-negative integer"


def _text(val: Any) -> Optional[str]:
    return None if _is_text(val) else "must be a string"


def _flag(val: Any) -> Optional[str]:
    return None if isinstance(val, bool) else "must be true or false"


def _log_level(val: Any) -> Optional[str]:
    if isinstance(val, str) and val.upper() in LOG_LEVELS:
        return None
    return f"must be one of {', '.join(LOG_LEVELS)}"


def _discord_id(val: Any) -> Optional[str]:
    return None if str(val).isdigit() else "must be a Discord user id (digits only)"


def _colors(val: Any) -> Optional[str]:
    if not isinstance(val, dict):
        return "must be a mapping of color names to hex strings"
    bad = [name for name, color in val.items() if not _is_hex_color(color)]
    if bad:
        return f"has invalid hex colors for {', '.join(bad)} (expected e.g. '0xFF00FF')"
    return None


# key -> (required, check)
EXPECTED_CONFIG: Dict[str, Tuple[bool, Check]] = {
    "bot_settings.bot_name": (False, _text),
    "bot_settings.log_file_name": (False, _text),
    "bot_settings.db_file_name": (False, _text),
    "bot_settings.debug_mode": (False, _flag),
    "bot_settings.log_level": (False, _log_level),
    "discord.token": (True, _text),
    "discord.operator_id": (True, _discord_id),
    "proxy.server": (False, _text),
    "proxy.port": (False, _text),
    "proxy.stable_port": (False, _text),
    "proxy.secret": (False, _text),
    "proxy.link_format": (False, _text),
    "access_settings.stuck_request_age_minutes": (False, _positive),
    "access_settings.session_max_age_hours": (False, _positive),
    "access_settings.default_device_limit": (False, _non_negative),
    "access_settings.default_expires_days": (False, _non_negative),
    "access_settings.quick_grant_device_limit": (False, _positive),
    "access_settings.clients_page_size": (False, _positive),
    "access_settings.recent_users_limit": (False, _positive),
    "access_settings.expiring_soon_days": (False, _positive),
    "message_settings.templates_file": (False, _text),
    "message_settings.embed_colors": (False, _colors),
    "message_settings.embed_footer_text": (False, _text),
    "message_settings.bot_display_name_in_messages": (False, _text),
}


def config_errors() -> List[str]:
    """All problems with the loaded settings, one line each."""
    errors = []
    for key, (required, check) in EXPECTED_CONFIG.items():
        val = get_config_value(key)
        if val is None:
            if required:
                errors.append(f"'{key}' is required but not set")
            continue
        problem = check(val)
        if problem:
            errors.append(f"'{key}' (value: {val!r}) {problem}")
    return errors


def validate_config() -> None:
    """
    Log every configuration problem and exit if there is any.

    A missing proxy secret or server is only a warning: profile requests then
    answer "proxy unavailable" instead of failing at startup.
    """
    logger.info("Validating configuration...")
    errors = config_errors()
    for error in errors:
        logger.critical(f"Config Error: {error}")

    for key in ("proxy.server", "proxy.secret"):
        if not get_config_value(key):
            logger.warning(f"Config Warning: '{key}' is not set; connection links are unavailable")

    if errors:
        logger.critical(
            f"Configuration has {len(errors)} error(s). Fix config.yaml or .env and restart."
        )
        sys.exit(1)
    logger.info("Configuration validated successfully.")
