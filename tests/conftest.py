import itertools
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Set, Tuple

import pytest

from accessgate.access import AccessGrantEvaluator
from accessgate.app import AccessGateApp
from accessgate.database import Database
from accessgate.proxy import ProxyLinks
from accessgate.request_store import RequestLifecycleStore
from accessgate.transport import ChatTransport, InboundEvent, Screen
from accessgate.wizard import AdminWizard

OPERATOR_ID = 1000
START_TS = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = START_TS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeTransport(ChatTransport):
    """In-memory transport recording every call; messages live until deleted."""

    def __init__(self):
        super().__init__()
        self._ids = itertools.count(1)
        self.live: Dict[int, Tuple[int, Screen]] = {}
        self.sent: List[Tuple[int, int, Screen]] = []
        self.edits: List[Tuple[int, int, Screen]] = []
        self.deletes: List[Tuple[int, int]] = []
        self.acks: List[Tuple[str, Optional[str], bool]] = []
        self.fail_send_to: Set[int] = set()
        self.fail_edits = False

    async def send_message(self, chat_id: int, screen: Screen) -> Optional[int]:
        if chat_id in self.fail_send_to:
            return None
        message_id = next(self._ids)
        self.live[message_id] = (chat_id, screen)
        self.sent.append((chat_id, message_id, screen))
        return message_id

    async def edit_message(self, chat_id: int, message_id: int, screen: Screen) -> bool:
        if self.fail_edits or message_id not in self.live:
            return False
        self.live[message_id] = (chat_id, screen)
        self.edits.append((chat_id, message_id, screen))
        return True

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        self.deletes.append((chat_id, message_id))
        return self.live.pop(message_id, None) is not None

    async def acknowledge_callback(
        self, callback_id: str, text: Optional[str] = None, alert: bool = False
    ) -> bool:
        self.acks.append((callback_id, text, alert))
        return True

    def live_in_chat(self, chat_id: int) -> Dict[int, Screen]:
        return {mid: screen for mid, (cid, screen) in self.live.items() if cid == chat_id}

    def sent_to(self, chat_id: int) -> List[Screen]:
        return [screen for cid, _, screen in self.sent if cid == chat_id]

    @property
    def last_ack(self) -> Tuple[str, Optional[str], bool]:
        return self.acks[-1]


def run_concurrently(func, workers: int = 4):
    """Call func from `workers` threads released at once. Returns (results, exceptions)."""
    barrier = threading.Barrier(workers)

    def _call(_):
        barrier.wait()
        try:
            return func(), None
        except Exception as e:
            return None, e

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(_call, range(workers)))
    return [r for r, e in outcomes if e is None], [e for r, e in outcomes if e is not None]


TEST_LINKS = ProxyLinks(
    turbo_url="https://t.me/proxy?server=example&port=8443&secret=abc",
    stable_url="https://t.me/proxy?server=example&port=443&secret=abc",
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock):
    return Database(str(tmp_path / "accessgate_test.db"), clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def evaluator(db, clock):
    return AccessGrantEvaluator(db, OPERATOR_ID, clock)


@pytest.fixture
def request_store(db, clock):
    return RequestLifecycleStore(db, clock)


@pytest.fixture
def wizard(db, request_store, evaluator, clock):
    return AdminWizard(db, request_store, evaluator, clock=clock)


@pytest.fixture
def make_user(db):
    def _make(user_id: int, username: Optional[str] = None, display_name: Optional[str] = None):
        db.upsert_user(user_id, username or f"user{user_id}", display_name)
        return db.get_user(user_id)

    return _make


@pytest.fixture
def app(db, transport, clock):
    return AccessGateApp(
        db,
        transport,
        OPERATOR_ID,
        proxy_links=lambda: TEST_LINKS,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def event():
    """Build an InboundEvent for a button press or command by user_id."""
    counter = itertools.count(1)

    def _event(user_id: int, command=None) -> InboundEvent:
        return InboundEvent(
            user_id=user_id,
            chat_id=user_id,
            username=f"user{user_id}",
            display_name=None,
            callback_id=f"cb-{next(counter)}",
            command=command,
        )

    return _event
