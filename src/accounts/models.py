from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class GameIdentity:
    canonical_id: str
    display_name: str


@dataclass(slots=True, frozen=True)
class DisplayNameHistoryEntry:
    display_name: str
    changed_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class Account:
    """
    A Telegram user linked to exactly one Minecraft profile.

    Rows are never updated in place: relinking means unlink, then link again.
    """

    chat_id: int
    game_identity: str
    game_display_name: str
    linked_at: datetime | None = None

    @property
    def identity(self) -> GameIdentity:
        return GameIdentity(self.game_identity, self.game_display_name)
