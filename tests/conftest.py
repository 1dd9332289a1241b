from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace

import pytest

from accounts.errors import AlreadyLinkedChatId, AlreadyLinkedGameIdentity
from accounts.models import Account, DisplayNameHistoryEntry, GameIdentity
from core.config import AppConfig, ServerTarget
from identity.errors import IdentityServiceError, PlayerNotFound
from linking.workflow import ReconciliationWorkflow
from whitelist.fleet import WhitelistFleetCoordinator
from whitelist.types import CommandOutcome, WhitelistAction

BASE_CONFIG = AppConfig(
    bot_token="",
    public_base_url="https://bot.example.org",
    webhook_secret_path="webhook",
    webhook_secret_token=None,
    database_url="sqlite+aiosqlite:///:memory:",
    db_create_schema=True,
    log_level="INFO",
    bot_language="en",
    server_host="127.0.0.1",
    server_port=50042,
    link_chat_id=-100123,
    community_chat_id=-100123,
    servers_file="servers.yaml",
    whitelist_max_attempts=10,
    whitelist_retry_delay_secs=2.0,
    rcon_timeout_secs=10.0,
    mojang_profiles_url="https://profiles.test/profiles/minecraft",
    mojang_history_url="https://profiles.test/user/profiles",
    identity_timeout_secs=5.0,
    admin_token=None,
)


def make_config(**overrides) -> AppConfig:
    return replace(BASE_CONFIG, **overrides)


TARGETS = (
    ServerTarget("10.0.0.1", 25575, "s1", name="survival"),
    ServerTarget("10.0.0.2", 25575, "s2", name="creative"),
)


class InMemoryAccountStore:
    def __init__(self) -> None:
        self.rows: dict[int, Account] = {}
        self.unlink_calls: list[int] = []

    async def link(self, chat_id: int, identity: GameIdentity) -> Account:
        if chat_id in self.rows:
            raise AlreadyLinkedChatId(chat_id)
        if any(a.game_identity == identity.canonical_id for a in self.rows.values()):
            raise AlreadyLinkedGameIdentity(identity.canonical_id)
        account = Account(chat_id, identity.canonical_id, identity.display_name)
        self.rows[chat_id] = account
        return account

    async def lookup_by_chat_id(self, chat_id: int) -> Account | None:
        return self.rows.get(chat_id)

    async def unlink(self, chat_id: int) -> bool:
        self.unlink_calls.append(chat_id)
        return self.rows.pop(chat_id, None) is not None


@dataclass
class FakeResolver:
    profiles: dict[str, GameIdentity] = field(default_factory=dict)
    histories: dict[str, list[DisplayNameHistoryEntry]] = field(default_factory=dict)
    broken: bool = False
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def resolve_by_name(self, display_name: str) -> GameIdentity:
        self.calls.append(("name", display_name))
        if self.broken:
            raise IdentityServiceError("service down")
        try:
            return self.profiles[display_name.lower()]
        except KeyError:
            raise PlayerNotFound(display_name) from None

    async def resolve_name_history(self, canonical_id: str) -> list[DisplayNameHistoryEntry]:
        self.calls.append(("history", canonical_id))
        if self.broken:
            raise IdentityServiceError("service down")
        if canonical_id not in self.histories:
            raise PlayerNotFound(canonical_id)
        return self.histories[canonical_id]


Responder = Callable[[ServerTarget, WhitelistAction, str], CommandOutcome]


class FakeWhitelistClient:
    """Scripted stand-in for RemoteWhitelistClient; succeeds unless told otherwise."""

    def __init__(self, respond: Responder | None = None) -> None:
        self.respond = respond or (lambda target, action, name: CommandOutcome.success("ok"))
        self.calls: list[tuple[str, WhitelistAction, str]] = []

    async def apply(
        self, target: ServerTarget, action: WhitelistAction, display_name: str
    ) -> CommandOutcome:
        self.calls.append((target.label, action, display_name))
        return self.respond(target, action, display_name)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver(profiles={"steve": GameIdentity("abc", "Steve")})


@pytest.fixture
def client() -> FakeWhitelistClient:
    return FakeWhitelistClient()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def workflow(store, resolver, client, sleeper) -> ReconciliationWorkflow:
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)
    return ReconciliationWorkflow(store=store, resolver=resolver, fleet=fleet, targets=TARGETS)
