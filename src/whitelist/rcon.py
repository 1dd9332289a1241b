from __future__ import annotations

import asyncio
import logging
import struct

from rcon.exceptions import EmptyResponse, SessionTimeout, WrongPassword
from rcon.source import rcon

from core.config import ServerTarget

from .types import CommandOutcome, WhitelistAction

logger = logging.getLogger(__name__)

# Minecraft's reply to `whitelist add|remove <name>` for a name with no profile.
PLAYER_UNKNOWN_REPLY = "That player does not exist"

# Minecraft drops RCON commands longer than this.
MAX_COMMAND_BYTES = 1446

_TRANSPORT_ERRORS = (
    OSError,
    EOFError,
    struct.error,
    ValueError,  # includes UnicodeError from IDNA-encoding a malformed host
    SessionTimeout,
    EmptyResponse,
)


class RemoteWhitelistClient:
    """
    One whitelist command against one server over RCON.

    Every call opens its own connection, authenticates, sends a single
    command, reads a single reply and closes. Nothing is kept between calls.
    """

    def __init__(self, *, timeout: float = 10.0) -> None:
        self._timeout = timeout

    async def _run(self, target: ServerTarget, command: str) -> str:
        return await rcon(
            command,
            host=target.host,
            port=target.port,
            passwd=target.shared_secret,
        )

    async def apply(
        self,
        target: ServerTarget,
        action: WhitelistAction,
        display_name: str,
    ) -> CommandOutcome:
        command = action.command(display_name)
        if len(command.encode("utf-8")) > MAX_COMMAND_BYTES:
            return CommandOutcome.unreachable("command too long for RCON", retryable=False)

        try:
            reply = await asyncio.wait_for(self._run(target, command), timeout=self._timeout)
        except asyncio.TimeoutError:
            return CommandOutcome.unreachable(f"timed out after {self._timeout}s")
        except WrongPassword:
            logger.warning("RCON auth failed on %s", target.label)
            return CommandOutcome.unreachable("auth: password rejected")
        except _TRANSPORT_ERRORS as e:
            return CommandOutcome.unreachable(f"{type(e).__name__}: {e}")

        logger.debug("RCON %s <- %r -> %r", target.label, command, reply)
        if PLAYER_UNKNOWN_REPLY in reply:
            return CommandOutcome.player_unknown(reply)
        return CommandOutcome.success(reply)
