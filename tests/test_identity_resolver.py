from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from identity.errors import IdentityServiceError, PlayerNotFound
from identity.resolver import IdentityResolver

PROFILES_URL = "https://profiles.test/profiles/minecraft"
HISTORY_URL = "https://profiles.test/user/profiles"


def _resolver(handler) -> IdentityResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdentityResolver(client, profiles_url=PROFILES_URL, history_url=HISTORY_URL)


async def test_resolve_by_name_posts_a_one_name_batch():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"id": "069a79f444e94726a5befca90e38aaf5", "name": "Notch"}])

    identity = await _resolver(handler).resolve_by_name("notch")

    assert seen == {"method": "POST", "url": PROFILES_URL, "body": ["notch"]}
    assert identity.canonical_id == "069a79f444e94726a5befca90e38aaf5"
    assert identity.display_name == "Notch"


async def test_resolve_by_name_empty_result_is_not_found():
    resolver = _resolver(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(PlayerNotFound):
        await resolver.resolve_by_name("nobody_here")


async def test_resolve_by_name_server_error_is_transport_error():
    resolver = _resolver(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(IdentityServiceError):
        await resolver.resolve_by_name("Steve")


async def test_resolve_by_name_connection_error_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(IdentityServiceError):
        await _resolver(handler).resolve_by_name("Steve")


async def test_resolve_by_name_garbage_payload_is_transport_error():
    resolver = _resolver(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(IdentityServiceError):
        await resolver.resolve_by_name("Steve")


async def test_name_history_keeps_service_order_and_parses_timestamps():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == f"{HISTORY_URL}/abc/names"
        return httpx.Response(
            200,
            json=[
                {"name": "Oldname"},
                {"name": "Midname", "changedToAt": 1414059749000},
                {"name": "Newname", "changedToAt": 1500000000000},
            ],
        )

    history = await _resolver(handler).resolve_name_history("abc")

    assert [h.display_name for h in history] == ["Oldname", "Midname", "Newname"]
    assert history[0].changed_at is None
    assert history[2].changed_at == datetime.fromtimestamp(1500000000, tz=timezone.utc)


@pytest.mark.parametrize("status", [204, 404])
async def test_name_history_unknown_profile_is_not_found(status):
    resolver = _resolver(lambda request: httpx.Response(status))

    with pytest.raises(PlayerNotFound):
        await resolver.resolve_name_history("abc")


async def test_name_history_server_error_is_transport_error():
    resolver = _resolver(lambda request: httpx.Response(500))

    with pytest.raises(IdentityServiceError):
        await resolver.resolve_name_history("abc")
