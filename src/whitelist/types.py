from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WhitelistAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"

    def command(self, display_name: str) -> str:
        return f"whitelist {self.value} {display_name}"


class CommandStatus(str, Enum):
    SUCCESS = "success"
    PLAYER_UNKNOWN = "player_unknown"
    UNREACHABLE = "unreachable"


@dataclass(slots=True, frozen=True)
class CommandOutcome:
    status: CommandStatus
    reply: str = ""
    cause: str | None = None
    # False when the failure is deterministic and another attempt cannot help.
    retryable: bool = True

    @classmethod
    def success(cls, reply: str) -> CommandOutcome:
        return cls(CommandStatus.SUCCESS, reply=reply)

    @classmethod
    def player_unknown(cls, reply: str) -> CommandOutcome:
        return cls(CommandStatus.PLAYER_UNKNOWN, reply=reply)

    @classmethod
    def unreachable(cls, cause: str, *, retryable: bool = True) -> CommandOutcome:
        return cls(CommandStatus.UNREACHABLE, cause=cause, retryable=retryable)


class FleetStatus(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL_FAILURE = "partial_failure"
    PLAYER_UNKNOWN = "player_unknown"


@dataclass(slots=True, frozen=True)
class FleetOutcome:
    status: FleetStatus
    failed_server_indices: tuple[int, ...] = ()
    server_index: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is FleetStatus.ALL_SUCCEEDED
