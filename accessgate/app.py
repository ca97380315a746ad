"""
Application service container and event dispatcher.

AccessGateApp owns the core components and receives its transport and
settings through the constructor. Every inbound event goes through
handle_event (button presses) or guarded (slash commands), which turn
AccessGateError into a short notice for the actor and keep any other failure
from escaping the event.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from accessgate.access import AccessGrantEvaluator
from accessgate.callbacks import COMMAND_TYPES, Command
from accessgate.commands import admin_commands, user_commands
from accessgate.config import get_config_value
from accessgate.database import Database
from accessgate.errors import AccessGateError, Unauthorized
from accessgate.messaging import get_message, get_variants
from accessgate.models import now_ts
from accessgate.proxy import ProxyLinks, links_from_config
from accessgate.renderer import MenuRenderer
from accessgate.request_store import RequestLifecycleStore
from accessgate.rotation import RotationPicker
from accessgate.transport import ChatTransport, InboundEvent, Screen
from accessgate.wizard import AdminWizard

Handler = Callable[..., Awaitable[None]]

HANDLERS: Dict[Type[Command], Handler] = {
    **user_commands.CALLBACK_HANDLERS,
    **admin_commands.CALLBACK_HANDLERS,
}

_unhandled = [cls.__name__ for cls in COMMAND_TYPES if cls not in HANDLERS]
if _unhandled:
    raise RuntimeError(f"No handler registered for commands: {', '.join(_unhandled)}")


async def dispatch_command(app: "AccessGateApp", event: InboundEvent, command: Command) -> None:
    if command.operator_only and not app.evaluator.is_operator(event.user_id):
        raise Unauthorized(f"user {event.user_id} on {command.tag}")
    await HANDLERS[type(command)](app, event, command)


class AccessGateApp:
    """Wires the core components together and dispatches inbound events."""

    def __init__(
        self,
        db: Database,
        transport: ChatTransport,
        operator_id: int,
        default_device_limit: int = 2,
        default_expires_days: int = 30,
        quick_grant_device_limit: int = 5,
        stuck_request_age_minutes: int = 60,
        session_max_age_hours: int = 24,
        clients_page_size: int = 8,
        recent_users_limit: int = 80,
        expiring_soon_days: int = 7,
        proxy_links: Callable[[], ProxyLinks] = links_from_config,
        clock: Callable[[], int] = now_ts,
        rng: Optional[random.Random] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.db = db
        self.transport = transport
        self.operator_id = operator_id
        self.quick_grant_device_limit = quick_grant_device_limit
        self.stuck_request_age_minutes = stuck_request_age_minutes
        self.session_max_age_hours = session_max_age_hours
        self.clients_page_size = clients_page_size
        self.recent_users_limit = recent_users_limit
        self.expiring_soon_days = expiring_soon_days
        self.proxy_links = proxy_links
        self.clock = clock

        self.evaluator = AccessGrantEvaluator(db, operator_id, clock)
        self.requests = RequestLifecycleStore(db, clock)
        self.wizard = AdminWizard(
            db,
            self.requests,
            self.evaluator,
            default_device_limit=default_device_limit,
            default_expires_days=default_expires_days,
            quick_grant_device_limit=quick_grant_device_limit,
            clock=clock,
        )
        self.renderer = MenuRenderer(db, transport)
        self.rotation = RotationPicker(db, rng)

        if not operator_id:
            self.logger.warning(
                "No operator id configured. Operator-only actions will be refused for everyone."
            )

    @classmethod
    def from_config(cls, db: Database, transport: ChatTransport, operator_id: int) -> "AccessGateApp":
        return cls(
            db,
            transport,
            operator_id,
            default_device_limit=get_config_value("access_settings.default_device_limit", 2),
            default_expires_days=get_config_value("access_settings.default_expires_days", 30),
            quick_grant_device_limit=get_config_value("access_settings.quick_grant_device_limit", 5),
            stuck_request_age_minutes=get_config_value("access_settings.stuck_request_age_minutes", 60),
            session_max_age_hours=get_config_value("access_settings.session_max_age_hours", 24),
            clients_page_size=get_config_value("access_settings.clients_page_size", 8),
            recent_users_limit=get_config_value("access_settings.recent_users_limit", 80),
            expiring_soon_days=get_config_value("access_settings.expiring_soon_days", 7),
        )

    # ---------- dispatch ----------

    async def handle_event(self, event: InboundEvent) -> None:
        """Dispatch a decoded button press to its handler."""
        command = event.command
        if command is None:
            self.logger.warning(f"Event from user {event.user_id} carries no command")
            return
        await self.guarded(event, type(command).__name__, dispatch_command, command)

    async def guarded(
        self, event: InboundEvent, action_name: str, handler: Handler, *args: Any
    ) -> None:
        """Run handler(app, event, *args) with the actor registered and all failures contained."""
        log = self.logger.getChild(action_name)
        try:
            await asyncio.to_thread(
                self.db.upsert_user, event.user_id, event.username, event.display_name
            )
            log.debug(f"Handling '{action_name}' for user {event.user_id}")
            await handler(self, event, *args)
        except AccessGateError as e:
            log.info(
                f"'{action_name}' by user {event.user_id} refused: {e.__class__.__name__} ({e.detail})"
            )
            await self.ack(event, get_message(e.message_key), alert=e.alert)
        except Exception as e:
            log.error(
                f"Unexpected error handling '{action_name}' for user {event.user_id}: {e}",
                exc_info=True,
            )
            await self.ack(event, get_message("errors.generic"), alert=True)

    # ---------- presentation helpers ----------

    async def ack(self, event: InboundEvent, text: Optional[str] = None, alert: bool = False) -> bool:
        if not event.callback_id:
            return False
        return await self.transport.acknowledge_callback(event.callback_id, text, alert)

    async def show(self, event: InboundEvent, screen: Screen) -> Optional[int]:
        """Render screen as the actor's live menu."""
        message_id = await self.renderer.render(event.user_id, screen, event.chat_id)
        if message_id is None:
            await self.ack(event, get_message("notices.dm_unavailable"), alert=True)
        return message_id

    async def notify(self, user_id: int, screen: Screen) -> bool:
        """Best-effort standalone message; never affects already committed state."""
        delivered = await self.transport.send_message(user_id, screen) is not None
        if not delivered:
            self.logger.info(f"Notification to user {user_id} was not delivered")
        return delivered

    def pick_variant(self, user_id: int, stage: str) -> str:
        return self.rotation.pick(user_id, stage, get_variants(f"rotation.{stage}"))

    def reap_stale_sessions(self) -> int:
        return self.wizard.reap_stale_sessions(self.session_max_age_hours)
