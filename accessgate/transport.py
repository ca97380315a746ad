"""
Chat transport boundary.

The core only talks to a ChatTransport: send, edit, delete and acknowledge.
Every method swallows delivery failures and reports them through its return
value. Failures Discord is known to produce in normal operation (message or
user gone, DMs closed, interaction already answered, rate limited) are logged
at debug level, anything else at error level.
"""

import abc
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import discord

from accessgate.callbacks import Command, encode_callback
from accessgate.messaging import build_embed, get_message

# Discord JSON error codes treated as normal delivery failures
EXPECTED_ERROR_CODES = {
    10003,  # Unknown channel
    10008,  # Unknown message
    10013,  # Unknown user
    10062,  # Unknown interaction
    40060,  # Interaction has already been acknowledged
    50005,  # Cannot edit a message authored by another user
    50007,  # Cannot send messages to this user
}

MAX_BUTTONS_PER_ROW = 5
MAX_ROWS = 5
# Buttons are handled in on_interaction, views are only containers
VIEW_TIMEOUT_SECONDS = 600


@dataclass(frozen=True)
class Button:
    """A keyboard button: either a callback command or an external link."""

    label: str
    command: Optional[Command] = None
    url: Optional[str] = None
    style: str = "secondary"


Keyboard = List[List[Button]]


@dataclass
class Screen:
    """Transport-neutral content of one message."""

    text: str
    keyboard: Keyboard = field(default_factory=list)
    title: Optional[str] = None
    color_type: str = "info"


@dataclass
class InboundEvent:
    """A decoded user action as seen by the dispatcher."""

    user_id: int
    chat_id: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    callback_id: Optional[str] = None
    command: Optional[Command] = None


def is_expected_transport_error(exc: BaseException) -> bool:
    if isinstance(exc, (discord.NotFound, discord.Forbidden)):
        return True
    if isinstance(exc, discord.HTTPException):
        return exc.status == 429 or exc.code in EXPECTED_ERROR_CODES
    return False


class ChatTransport(abc.ABC):
    """Outbound side of the chat platform."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def log_failure(self, action: str, exc: BaseException) -> None:
        if is_expected_transport_error(exc):
            self.logger.debug(f"Expected transport failure during {action}: {exc}")
        else:
            self.logger.error(
                f"Unexpected transport failure during {action}: {exc}", exc_info=True
            )

    @abc.abstractmethod
    async def send_message(self, chat_id: int, screen: Screen) -> Optional[int]:
        """Send a new message. Returns its id, or None when delivery failed."""

    @abc.abstractmethod
    async def edit_message(self, chat_id: int, message_id: int, screen: Screen) -> bool:
        """Replace a message's content in place."""

    @abc.abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        pass

    @abc.abstractmethod
    async def acknowledge_callback(
        self, callback_id: str, text: Optional[str] = None, alert: bool = False
    ) -> bool:
        """Answer a button press, optionally with a short notice."""


def build_view(keyboard: Keyboard) -> Optional[discord.ui.View]:
    """Convert a keyboard into a component view; rows beyond Discord's limits are wrapped or dropped."""
    if not keyboard:
        return None
    view = discord.ui.View(timeout=VIEW_TIMEOUT_SECONDS)
    row_index = 0
    for row in keyboard:
        for start in range(0, len(row), MAX_BUTTONS_PER_ROW):
            if row_index >= MAX_ROWS:
                return view
            for button in row[start : start + MAX_BUTTONS_PER_ROW]:
                if button.url:
                    item = discord.ui.Button(
                        label=button.label,
                        url=button.url,
                        style=discord.ButtonStyle.link,
                        row=row_index,
                    )
                else:
                    item = discord.ui.Button(
                        label=button.label,
                        custom_id=encode_callback(button.command),
                        style=getattr(
                            discord.ButtonStyle, button.style, discord.ButtonStyle.secondary
                        ),
                        row=row_index,
                    )
                view.add_item(item)
            row_index += 1
    return view


class DiscordTransport(ChatTransport):
    """
    ChatTransport over a discord.py client.

    A chat id is the user's id; messages go to the DM channel with that user.
    In-flight interactions are registered under their id, which is the callback
    id handed to the core.
    """

    def __init__(self, client: discord.Client):
        super().__init__()
        self.client = client
        self._channels: Dict[int, discord.DMChannel] = {}
        self._interactions: Dict[str, discord.Interaction] = {}
        self._answered: Set[str] = set()

    # ---------- interactions ----------

    def register_interaction(self, interaction: discord.Interaction) -> str:
        callback_id = str(interaction.id)
        self._interactions[callback_id] = interaction
        return callback_id

    async def finish_interaction(self, callback_id: str) -> None:
        """Make sure the interaction got a response, then forget it."""
        interaction = self._interactions.pop(callback_id, None)
        answered = callback_id in self._answered
        self._answered.discard(callback_id)
        if interaction is None:
            return
        try:
            if not interaction.response.is_done():
                await interaction.response.defer()
            elif (
                interaction.type == discord.InteractionType.application_command
                and not answered
            ):
                await interaction.followup.send(
                    get_message("notices.check_dm"), ephemeral=True
                )
        except Exception as e:
            self.log_failure(f"finishing interaction {callback_id}", e)

    async def acknowledge_callback(
        self, callback_id: str, text: Optional[str] = None, alert: bool = False
    ) -> bool:
        interaction = self._interactions.get(callback_id)
        if interaction is None:
            self.logger.debug(f"No in-flight interaction for callback {callback_id}")
            return False
        try:
            if text is None:
                if not interaction.response.is_done():
                    await interaction.response.defer()
                return True
            embed = build_embed(text, color_type="warning" if alert else "info")
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
            self._answered.add(callback_id)
            return True
        except Exception as e:
            self.log_failure(f"acknowledging callback {callback_id}", e)
            return False

    # ---------- messages ----------

    async def _get_channel(self, chat_id: int) -> discord.DMChannel:
        channel = self._channels.get(chat_id)
        if channel is not None:
            return channel
        user = self.client.get_user(chat_id) or await self.client.fetch_user(chat_id)
        channel = user.dm_channel or await user.create_dm()
        self._channels[chat_id] = channel
        return channel

    async def send_message(self, chat_id: int, screen: Screen) -> Optional[int]:
        try:
            channel = await self._get_channel(chat_id)
            kwargs = {"embed": build_embed(screen.text, screen.title, screen.color_type)}
            view = build_view(screen.keyboard)
            if view is not None:
                kwargs["view"] = view
            message = await channel.send(**kwargs)
            self.logger.debug(f"Sent message {message.id} to chat {chat_id}")
            return message.id
        except Exception as e:
            self.log_failure(f"sending to chat {chat_id}", e)
            return None

    async def edit_message(self, chat_id: int, message_id: int, screen: Screen) -> bool:
        try:
            channel = await self._get_channel(chat_id)
            await channel.get_partial_message(message_id).edit(
                embed=build_embed(screen.text, screen.title, screen.color_type),
                view=build_view(screen.keyboard),
            )
            return True
        except Exception as e:
            self.log_failure(f"editing message {message_id} in chat {chat_id}", e)
            return False

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            channel = await self._get_channel(chat_id)
            await channel.get_partial_message(message_id).delete()
            return True
        except Exception as e:
            self.log_failure(f"deleting message {message_id} in chat {chat_id}", e)
            return False
