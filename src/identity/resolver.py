from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from accounts.models import DisplayNameHistoryEntry, GameIdentity

from .errors import IdentityServiceError, PlayerNotFound

logger = logging.getLogger(__name__)

DEFAULT_PROFILES_URL = "https://api.mojang.com/profiles/minecraft"
DEFAULT_HISTORY_URL = "https://api.mojang.com/user/profiles"


def _parse_changed_at(raw: Any) -> datetime | None:
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(int(raw) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _json_list(resp: httpx.Response, what: str) -> list:
    try:
        data = resp.json()
    except ValueError as e:
        raise IdentityServiceError(f"{what}: response is not JSON") from e
    if not isinstance(data, list):
        raise IdentityServiceError(f"{what}: expected a JSON array, got {type(data).__name__}")
    return data


class IdentityResolver:
    """
    Minecraft profile lookups against the Mojang API.

    Nothing is cached and nothing is retried here: every call hits the service
    and transport failures surface as IdentityServiceError to the caller.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        profiles_url: str = DEFAULT_PROFILES_URL,
        history_url: str = DEFAULT_HISTORY_URL,
    ) -> None:
        self._client = client
        self._profiles_url = profiles_url
        self._history_url = history_url.rstrip("/")

    async def resolve_by_name(self, display_name: str) -> GameIdentity:
        try:
            resp = await self._client.post(self._profiles_url, json=[display_name])
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug("Profile lookup for %r failed: %s", display_name, e)
            raise IdentityServiceError(str(e)) from e

        if resp.status_code == 204 or not resp.content:
            raise PlayerNotFound(display_name)

        profiles = _json_list(resp, "profile lookup")
        if not profiles:
            logger.info("No Minecraft profile named %r", display_name)
            raise PlayerNotFound(display_name)

        first = profiles[0]
        if not isinstance(first, dict) or not first.get("id") or not first.get("name"):
            raise IdentityServiceError(f"profile lookup: malformed entry {first!r}")
        return GameIdentity(canonical_id=str(first["id"]), display_name=str(first["name"]))

    async def resolve_name_history(self, canonical_id: str) -> list[DisplayNameHistoryEntry]:
        """
        Return the profile's name history, oldest first as delivered by the
        service. Callers treat the last entry as the current name.
        """
        url = f"{self._history_url}/{canonical_id}/names"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Name history lookup for %s failed: %s", canonical_id, e)
            raise IdentityServiceError(str(e)) from e

        if resp.status_code in (204, 404) or (resp.is_success and not resp.content):
            logger.info("No name history for profile %s", canonical_id)
            raise PlayerNotFound(canonical_id)
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.debug("Name history lookup for %s failed: %s", canonical_id, e)
            raise IdentityServiceError(str(e)) from e

        out: list[DisplayNameHistoryEntry] = []
        for item in _json_list(resp, "name history"):
            if not isinstance(item, dict) or not item.get("name"):
                raise IdentityServiceError(f"name history: malformed entry {item!r}")
            out.append(
                DisplayNameHistoryEntry(
                    display_name=str(item["name"]),
                    changed_at=_parse_changed_at(item.get("changedToAt")),
                )
            )
        return out
