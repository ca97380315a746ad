"""Single live message per user."""

import asyncio
import logging
from typing import Optional

from accessgate.database import Database
from accessgate.transport import ChatTransport, Screen


class MenuRenderer:
    """
    Keeps exactly one evolving menu message per user.

    The recorded message is edited in place. When it can no longer be edited it
    is deleted (best effort) and replaced by a freshly sent one. Recording the
    new id is an atomic swap; whatever id it displaces is deleted as well, so
    interleaved renders for the same user converge on a single live message.
    """

    def __init__(self, db: Database, transport: ChatTransport):
        self.db = db
        self.transport = transport
        self.logger = logging.getLogger(self.__class__.__name__)

    async def render(
        self, user_id: int, screen: Screen, chat_id: Optional[int] = None
    ) -> Optional[int]:
        """Show screen to the user. Returns the live message id, or None if nothing could be sent."""
        if chat_id is None:
            chat_id = user_id

        user = await asyncio.to_thread(self.db.get_user, user_id)
        live_id = user.menu_message_id if user else None

        if live_id is not None:
            if await self.transport.edit_message(chat_id, live_id, screen):
                return live_id
            self.logger.debug(
                f"Live message {live_id} of user {user_id} is no longer editable; replacing it"
            )
            await self.transport.delete_message(chat_id, live_id)
            await asyncio.to_thread(self.db.clear_menu_message, user_id, live_id)

        new_id = await self.transport.send_message(chat_id, screen)
        if new_id is None:
            self.logger.warning(f"Could not deliver menu to user {user_id}")
            return None

        displaced = await asyncio.to_thread(self.db.swap_menu_message, user_id, new_id)
        if displaced is not None:
            # Another render recorded its message in between
            await self.transport.delete_message(chat_id, displaced)
        return new_id
