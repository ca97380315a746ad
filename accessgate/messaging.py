"""
User-facing copy and embeds.

All text shown to users and to the operator lives in message_templates.json,
addressed by dotted keys ("errors.not_found"). Lists under "rotation" hold the
P.S. variants handed to the rotation picker.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

import discord

from accessgate.config import get_config_value

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATES: Dict[str, Any] = {}

_MISSING = "<Missing Template: {key}>"


def _template_candidates(file_name: str) -> List[str]:
    # Working directory first, then the project root next to the package
    package_root = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..")
    return [os.path.abspath(file_name), os.path.abspath(os.path.join(package_root, file_name))]


def load_message_templates() -> None:
    """(Re)load MESSAGE_TEMPLATES. A missing or broken file leaves it empty and is logged."""
    global MESSAGE_TEMPLATES
    file_name = get_config_value("message_settings.templates_file", "message_templates.json")
    candidates = _template_candidates(file_name)
    path = next((p for p in candidates if os.path.exists(p)), None)

    MESSAGE_TEMPLATES = {}
    if path is None:
        logger.error(f"Message templates not found (looked in {candidates}); all copy will be placeholders")
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            MESSAGE_TEMPLATES = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Message templates file {path} is not valid JSON: {e}")
        return
    except OSError as e:
        logger.error(f"Cannot read message templates from {path}: {e}", exc_info=True)
        return
    logger.info(f"Loaded message templates from {path}")


def _lookup(key: str) -> Any:
    node: Any = MESSAGE_TEMPLATES
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_bot_display_name() -> str:
    return get_config_value(
        "message_settings.bot_display_name_in_messages",
        get_config_value("bot_settings.bot_name", "AccessGate"),
    )


def get_message(key: str, default: Optional[str] = None, **kwargs: Any) -> str:
    """
    Format the template stored under key with kwargs.

    Unknown keys and formatting problems never raise: they are logged and the
    default (or a visible placeholder) is returned instead.
    """
    fallback = default if default is not None else _MISSING.format(key=key)
    try:
        template = _lookup(key)
    except KeyError:
        logger.warning(f"No message template '{key}'")
        return fallback

    if not isinstance(template, str):
        logger.warning(f"Message template '{key}' is a {type(template).__name__}, not text")
        return fallback
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError, ValueError) as e:
        logger.error(f"Cannot format template '{key}' with {sorted(kwargs)}: {e}")
        return fallback


def get_variants(key: str) -> List[str]:
    """The list of copy variants under key; empty when absent."""
    try:
        variants = _lookup(key)
    except KeyError:
        logger.warning(f"No variant list '{key}' in message templates")
        return []
    if not isinstance(variants, list):
        logger.warning(f"Message template '{key}' is not a list of variants")
        return []
    return [str(v) for v in variants]


def get_embed_color(color_type: str) -> discord.Color:
    """Embed colour configured for success / error / info / warning, default colour otherwise."""
    raw = get_config_value(f"message_settings.embed_colors.{color_type}")
    if not isinstance(raw, str):
        logger.debug(f"No embed colour configured for '{color_type}'")
        return discord.Color.default()
    try:
        return discord.Color(int(raw, 16))
    except ValueError:
        logger.warning(f"Embed colour '{raw}' for '{color_type}' is not hex")
        return discord.Color.default()


def build_embed(
    description: str, title: Optional[str] = None, color_type: str = "info"
) -> discord.Embed:
    """The embed a screen is shown in, footer included."""
    embed = discord.Embed(
        title=title, description=description, color=get_embed_color(color_type)
    )
    footer = get_config_value("message_settings.embed_footer_text")
    if footer:
        try:
            footer = footer.format(bot_name=get_bot_display_name())
        except (KeyError, IndexError):
            pass
        embed.set_footer(text=footer)
    return embed


load_message_templates()
