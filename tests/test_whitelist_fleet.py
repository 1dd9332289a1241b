from __future__ import annotations

import pytest

from conftest import TARGETS, FakeWhitelistClient
from core.config import ServerTarget
from whitelist.fleet import WhitelistFleetCoordinator
from whitelist.types import CommandOutcome, FleetStatus, WhitelistAction


def _scripted(per_server: dict[str, list[CommandOutcome]]):
    """Pop outcomes per server label; fall back to success once a script runs out."""

    def respond(target, action, name):
        script = per_server.get(target.label)
        if script:
            return script.pop(0)
        return CommandOutcome.success(f"done {action.value} {name}")

    return respond


async def test_all_servers_succeed(sleeper):
    client = FakeWhitelistClient()
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.ADD, "Steve")

    assert outcome.status is FleetStatus.ALL_SUCCEEDED
    assert outcome.ok
    assert client.calls == [
        ("survival", WhitelistAction.ADD, "Steve"),
        ("creative", WhitelistAction.ADD, "Steve"),
    ]
    assert sleeper.delays == []


async def test_unreachable_server_is_retried_with_fixed_delay(sleeper):
    down = CommandOutcome.unreachable("connection refused")
    client = FakeWhitelistClient(_scripted({"survival": [down, down]}))
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.ADD, "Steve")

    assert outcome.status is FleetStatus.ALL_SUCCEEDED
    assert [c[0] for c in client.calls] == ["survival", "survival", "survival", "creative"]
    assert sleeper.delays == [2.0, 2.0]


async def test_exhausted_retries_fail_fast_without_touching_later_servers(sleeper):
    client = FakeWhitelistClient(
        lambda target, action, name: (
            CommandOutcome.unreachable("timeout")
            if target.label == "survival"
            else CommandOutcome.success("ok")
        )
    )
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.REMOVE, "Steve")

    assert outcome.status is FleetStatus.PARTIAL_FAILURE
    assert outcome.failed_server_indices == (0,)
    assert len(client.calls) == 10
    assert all(label == "survival" for label, _, _ in client.calls)
    # No sleep after the final attempt.
    assert sleeper.delays == [2.0] * 9


async def test_failure_on_second_server_reports_its_index(sleeper):
    client = FakeWhitelistClient(
        lambda target, action, name: (
            CommandOutcome.unreachable("refused")
            if target.label == "creative"
            else CommandOutcome.success("ok")
        )
    )
    fleet = WhitelistFleetCoordinator(client, max_attempts=3, retry_delay=0.5, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.ADD, "Steve")

    assert outcome.status is FleetStatus.PARTIAL_FAILURE
    assert outcome.failed_server_indices == (1,)
    assert len(client.calls) == 4
    assert sleeper.delays == [0.5, 0.5]


async def test_player_unknown_stops_immediately_and_is_not_retried(sleeper):
    client = FakeWhitelistClient(
        lambda target, action, name: CommandOutcome.player_unknown("That player does not exist")
    )
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.REMOVE, "Ghost")

    assert outcome.status is FleetStatus.PLAYER_UNKNOWN
    assert outcome.server_index == 0
    assert client.calls == [("survival", WhitelistAction.REMOVE, "Ghost")]
    assert sleeper.delays == []


async def test_removing_an_unwhitelisted_name_reports_player_unknown(sleeper):
    whitelisted: set[str] = set()

    def respond(target, action, name):
        if action is WhitelistAction.REMOVE and name not in whitelisted:
            return CommandOutcome.player_unknown("That player does not exist")
        return CommandOutcome.success(f"Removed {name} from the whitelist")

    fleet = WhitelistFleetCoordinator(FakeWhitelistClient(respond), sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.REMOVE, "Steve")

    assert outcome.status is FleetStatus.PLAYER_UNKNOWN


async def test_empty_fleet_succeeds(sleeper):
    client = FakeWhitelistClient()
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply((), WhitelistAction.ADD, "Steve")

    assert outcome.status is FleetStatus.ALL_SUCCEEDED
    assert client.calls == []


async def test_servers_are_visited_in_configured_order(sleeper):
    targets = tuple(ServerTarget(f"10.0.0.{i}", 25575, "pw") for i in range(1, 5))
    client = FakeWhitelistClient()
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    await fleet.fleet_apply(targets, WhitelistAction.ADD, "Alex")

    assert [c[0] for c in client.calls] == [t.address for t in targets]


async def test_non_retryable_failure_is_tried_once(sleeper):
    rejected = CommandOutcome.unreachable("command too long for RCON", retryable=False)
    client = FakeWhitelistClient(_scripted({"survival": [rejected]}))
    fleet = WhitelistFleetCoordinator(client, sleep=sleeper)

    outcome = await fleet.fleet_apply(TARGETS, WhitelistAction.ADD, "Steve")

    assert outcome.status is FleetStatus.PARTIAL_FAILURE
    assert outcome.failed_server_indices == (0,)
    assert client.calls == [("survival", WhitelistAction.ADD, "Steve")]
    assert sleeper.delays == []


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        WhitelistFleetCoordinator(FakeWhitelistClient(), max_attempts=0)
