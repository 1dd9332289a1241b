from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from core.config import ServerTarget

from .types import (
    CommandOutcome,
    CommandStatus,
    FleetOutcome,
    FleetStatus,
    WhitelistAction,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_RETRY_DELAY_SECS = 2.0


class WhitelistClient(Protocol):
    async def apply(
        self, target: ServerTarget, action: WhitelistAction, display_name: str
    ) -> CommandOutcome: ...


class WhitelistFleetCoordinator:
    """
    Apply one whitelist change to every configured server, in order.

    Each server gets up to `max_attempts` tries with a constant delay, retrying
    only while it is unreachable. The fan-out stops at the first server that
    stays unreachable (PARTIAL_FAILURE) or reports the player as unknown
    (PLAYER_UNKNOWN); servers after it are not contacted.
    """

    def __init__(
        self,
        client: WhitelistClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self._max_attempts = max_attempts
        self._retry_delay = max(0.0, retry_delay)
        self._sleep = sleep

    async def _apply_with_retry(
        self, target: ServerTarget, action: WhitelistAction, display_name: str
    ) -> CommandOutcome:
        outcome = CommandOutcome.unreachable("not attempted")
        for attempt in range(1, self._max_attempts + 1):
            outcome = await self._client.apply(target, action, display_name)
            if outcome.status is not CommandStatus.UNREACHABLE:
                return outcome
            logger.warning(
                "Whitelist %s %s on %s unreachable (attempt %s/%s): %s",
                action.value,
                display_name,
                target.label,
                attempt,
                self._max_attempts,
                outcome.cause,
            )
            if not outcome.retryable:
                break
            if attempt < self._max_attempts:
                await self._sleep(self._retry_delay)
        return outcome

    async def fleet_apply(
        self,
        targets: Sequence[ServerTarget],
        action: WhitelistAction,
        display_name: str,
    ) -> FleetOutcome:
        for index, target in enumerate(targets):
            outcome = await self._apply_with_retry(target, action, display_name)

            if outcome.status is CommandStatus.UNREACHABLE:
                logger.error(
                    "Giving up on %s after %s attempts; %s of %s server(s) not tried.",
                    target.label,
                    self._max_attempts,
                    len(targets) - index - 1,
                    len(targets),
                )
                return FleetOutcome(FleetStatus.PARTIAL_FAILURE, failed_server_indices=(index,))

            if outcome.status is CommandStatus.PLAYER_UNKNOWN:
                logger.info(
                    "%s reports player %r unknown (%r)", target.label, display_name, outcome.reply
                )
                return FleetOutcome(FleetStatus.PLAYER_UNKNOWN, server_index=index)

            logger.info("%s: whitelist %s %s -> %r", target.label, action.value, display_name, outcome.reply)

        return FleetOutcome(FleetStatus.ALL_SUCCEEDED)
