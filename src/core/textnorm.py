from __future__ import annotations

import re
import unicodedata

# Java Edition usernames: 3-16 chars today, but legacy accounts can be shorter.
_PLAYER_NAME_RE = re.compile(r"[A-Za-z0-9_]{1,16}")


def _strip_invisibles_and_controls(s: str) -> str:
    """
    Remove invisible format characters (Cf) (zero-width joiners/space, BOM)
    and control characters (Cc). Mobile clients like to paste these in.
    """
    return "".join(ch for ch in s if unicodedata.category(ch) not in {"Cf", "Cc"})


def sanitize_player_name(v: str | None) -> str:
    """
    Clean a user-typed Minecraft name before it goes anywhere near the
    profile API or an RCON command:

      • NFKC normalize (full-width letters fold to ASCII).
      • Strip invisible format/control chars.
      • Trim whitespace and a leading '@'.

    Case is preserved; the profile API is case-insensitive and returns the
    canonical spelling.
    """
    if not v:
        return ""
    s = unicodedata.normalize("NFKC", v)
    s = _strip_invisibles_and_controls(s)
    return s.strip().lstrip("@").strip()


def is_valid_player_name(name: str) -> bool:
    return bool(_PLAYER_NAME_RE.fullmatch(name or ""))
