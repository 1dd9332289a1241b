from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from accounts.errors import AlreadyLinkedChatId, AlreadyLinkedGameIdentity, StorageError
from accounts.models import Account, DisplayNameHistoryEntry, GameIdentity
from core.config import ServerTarget
from identity.errors import IdentityServiceError, PlayerNotFound
from whitelist.types import FleetOutcome, FleetStatus, WhitelistAction

logger = logging.getLogger(__name__)


class AccountStorePort(Protocol):
    async def link(self, chat_id: int, identity: GameIdentity) -> Account: ...

    async def lookup_by_chat_id(self, chat_id: int) -> Account | None: ...

    async def unlink(self, chat_id: int) -> bool: ...


class IdentityResolverPort(Protocol):
    async def resolve_by_name(self, display_name: str) -> GameIdentity: ...

    async def resolve_name_history(self, canonical_id: str) -> list[DisplayNameHistoryEntry]: ...


class FleetPort(Protocol):
    async def fleet_apply(
        self, targets: Sequence[ServerTarget], action: WhitelistAction, display_name: str
    ) -> FleetOutcome: ...


class LinkStatus(str, Enum):
    DONE = "done"
    NAME_NOT_FOUND = "name_not_found"
    ALREADY_LINKED = "already_linked"
    IDENTITY_CLAIMED = "identity_claimed"
    SERVERS_UNREACHABLE = "servers_unreachable"
    SYSTEM_ERROR = "system_error"


class UnlinkStatus(str, Enum):
    DONE = "done"
    NOOP = "noop"
    SERVERS_UNREACHABLE = "servers_unreachable"
    NAME_UNRESOLVED = "name_unresolved"
    SYSTEM_ERROR = "system_error"


@dataclass(slots=True, frozen=True)
class LinkResult:
    status: LinkStatus
    identity: GameIdentity | None = None

    @property
    def ok(self) -> bool:
        return self.status is LinkStatus.DONE


@dataclass(slots=True, frozen=True)
class UnlinkResult:
    status: UnlinkStatus
    account: Account | None = None
    removed_name: str | None = None
    recovered: bool = False

    @property
    def ok(self) -> bool:
        return self.status is UnlinkStatus.DONE


class ReconciliationWorkflow:
    """
    Keeps the account table and the servers' whitelists in step.

    The store write and the whitelist fan-out are not one transaction. Two
    rules hold them together:

    * link: if the fan-out does not fully succeed, the row just written is
      deleted again before returning;
    * unlink: the row is deleted only after every server confirmed removal.

    An exception or cancellation during the link fan-out also triggers the
    compensating delete before it propagates. Only a process crash between a
    failed fan-out and that delete can leave a row with no whitelist entry
    behind; that is not repaired automatically.
    """

    def __init__(
        self,
        *,
        store: AccountStorePort,
        resolver: IdentityResolverPort,
        fleet: FleetPort,
        targets: Sequence[ServerTarget],
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._fleet = fleet
        self._targets = tuple(targets)
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def targets(self) -> tuple[ServerTarget, ...]:
        return self._targets

    def _lock_for(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    async def link(self, chat_id: int, requested_name: str) -> LinkResult:
        lock = self._lock_for(chat_id)
        async with lock:
            return await self._link(chat_id, requested_name)

    async def unlink(self, chat_id: int) -> UnlinkResult:
        lock = self._lock_for(chat_id)
        async with lock:
            return await self._unlink(chat_id)

    async def _link(self, chat_id: int, requested_name: str) -> LinkResult:
        try:
            identity = await self._resolver.resolve_by_name(requested_name)
        except PlayerNotFound:
            logger.info("link chat_id=%s: no profile named %r", chat_id, requested_name)
            return LinkResult(LinkStatus.NAME_NOT_FOUND)
        except IdentityServiceError as e:
            logger.error("link chat_id=%s: identity lookup failed: %s", chat_id, e)
            return LinkResult(LinkStatus.SYSTEM_ERROR)

        try:
            await self._store.link(chat_id, identity)
        except AlreadyLinkedChatId:
            return LinkResult(LinkStatus.ALREADY_LINKED, identity)
        except AlreadyLinkedGameIdentity:
            logger.info(
                "link chat_id=%s: %s already claimed by another user", chat_id, identity.canonical_id
            )
            return LinkResult(LinkStatus.IDENTITY_CLAIMED, identity)
        except StorageError:
            logger.exception("link chat_id=%s: storing the link failed", chat_id)
            return LinkResult(LinkStatus.SYSTEM_ERROR, identity)

        try:
            outcome = await self._fleet.fleet_apply(
                self._targets, WhitelistAction.ADD, identity.display_name
            )
        except BaseException:
            # Includes cancellation: the row must not outlive a fan-out that never finished.
            logger.exception("link chat_id=%s: whitelist add aborted; rolling back the link", chat_id)
            await self._compensate(chat_id)
            raise
        if outcome.ok:
            return LinkResult(LinkStatus.DONE, identity)

        logger.warning(
            "link chat_id=%s: whitelist add of %s ended with %s; rolling back the link",
            chat_id,
            identity.display_name,
            outcome.status.value,
        )
        if not await self._compensate(chat_id):
            return LinkResult(LinkStatus.SYSTEM_ERROR, identity)
        return LinkResult(LinkStatus.SERVERS_UNREACHABLE, identity)

    async def _compensate(self, chat_id: int) -> bool:
        try:
            await self._store.unlink(chat_id)
        except StorageError:
            logger.exception(
                "link chat_id=%s: compensating unlink failed; account row is orphaned", chat_id
            )
            return False
        return True

    async def _unlink(self, chat_id: int) -> UnlinkResult:
        try:
            account = await self._store.lookup_by_chat_id(chat_id)
        except StorageError:
            logger.exception("unlink chat_id=%s: account lookup failed", chat_id)
            return UnlinkResult(UnlinkStatus.SYSTEM_ERROR)
        if account is None:
            return UnlinkResult(UnlinkStatus.NOOP)

        removed_name = account.game_display_name
        recovered = False
        outcome = await self._fleet.fleet_apply(
            self._targets, WhitelistAction.REMOVE, removed_name
        )

        if outcome.status is FleetStatus.PLAYER_UNKNOWN:
            logger.info(
                "unlink chat_id=%s: %r unknown on server #%s, looking up current name",
                chat_id,
                removed_name,
                outcome.server_index,
            )
            fresh, failure = await self._recover_identity(account)
            if failure is not None:
                return UnlinkResult(failure, account)
            removed_name = fresh.display_name
            recovered = True
            outcome = await self._fleet.fleet_apply(
                self._targets, WhitelistAction.REMOVE, removed_name
            )
            if outcome.status is FleetStatus.PLAYER_UNKNOWN:
                logger.warning(
                    "unlink chat_id=%s: current name %r also unknown; keeping account",
                    chat_id,
                    removed_name,
                )
                return UnlinkResult(UnlinkStatus.NAME_UNRESOLVED, account, removed_name, True)

        if outcome.status is FleetStatus.PARTIAL_FAILURE:
            logger.warning(
                "unlink chat_id=%s: whitelist remove of %s failed on server(s) %s; keeping account",
                chat_id,
                removed_name,
                list(outcome.failed_server_indices),
            )
            return UnlinkResult(UnlinkStatus.SERVERS_UNREACHABLE, account, removed_name, recovered)

        try:
            await self._store.unlink(chat_id)
        except StorageError:
            logger.exception("unlink chat_id=%s: deleting the account failed", chat_id)
            return UnlinkResult(UnlinkStatus.SYSTEM_ERROR, account, removed_name, recovered)
        return UnlinkResult(UnlinkStatus.DONE, account, removed_name, recovered)

    async def _recover_identity(
        self, account: Account
    ) -> tuple[GameIdentity | None, UnlinkStatus | None]:
        try:
            history = await self._resolver.resolve_name_history(account.game_identity)
        except PlayerNotFound:
            history = []
        except IdentityServiceError as e:
            logger.error("name history for %s failed: %s", account.game_identity, e)
            return None, UnlinkStatus.SYSTEM_ERROR

        if not history:
            logger.warning("no name history for %s; cannot determine current name", account.game_identity)
            return None, UnlinkStatus.NAME_UNRESOLVED

        # History is delivered oldest first; the last entry is the current name.
        current_name = history[-1].display_name
        try:
            fresh = await self._resolver.resolve_by_name(current_name)
        except PlayerNotFound:
            logger.warning("current name %r of %s does not resolve", current_name, account.game_identity)
            return None, UnlinkStatus.NAME_UNRESOLVED
        except IdentityServiceError as e:
            logger.error("profile lookup for %r failed: %s", current_name, e)
            return None, UnlinkStatus.SYSTEM_ERROR

        if fresh.canonical_id != account.game_identity:
            logger.warning(
                "name %r now belongs to %s, stored identity is %s",
                current_name,
                fresh.canonical_id,
                account.game_identity,
            )
        return fresh, None
