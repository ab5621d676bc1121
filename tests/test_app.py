"""Tests for the RaidDeck Textual application."""

import asyncio
import http.client
import importlib.util
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Sequence

import pytest

if importlib.util.find_spec("textual") is None:  # pragma: no cover - optional dependency
    pytest.skip("textual is not installed", allow_module_level=True)

from raiddeck import app as app_module
from raiddeck.app import (
    AddChannelScreen,
    AddChannelTile,
    DashboardChanged,
    RaidDeckApp,
    RaidTile,
    StatusBar,
    _format_timedelta,
    describe_channel,
)
from raiddeck.cache import ChannelStatus
from raiddeck.config import AppConfig
from raiddeck.database import ChannelDatabase, channel_key
from raiddeck.errors import RaidError
from raiddeck.pipeline import VisibleChannel
from raiddeck.service import ChannelState, SubscriptionHandle
from raiddeck.sync import SyncEngine


class StubService:
    """Channel service answering from a fixed table."""

    def __init__(self, states: Dict[str, ChannelState]) -> None:
        self.states = {channel_key(name): state for name, state in states.items()}
        self.raids: list[str] = []
        self.fail_raids = False
        self.raid_error: Optional[Exception] = None
        self.closed = False

    async def lookup_many(self, names: Sequence[str]) -> Dict[str, Optional[ChannelState]]:
        return {name: self.states.get(channel_key(name)) for name in names}

    async def subscribe(self, name: str, on_change: Callable[[ChannelState], None]) -> SubscriptionHandle:
        return SubscriptionHandle(name, len(name))

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        pass

    async def start_raid(self, name: str) -> None:
        if self.fail_raids:
            raise RaidError("raid rejected")
        if self.raid_error is not None:
            raise self.raid_error
        self.raids.append(name)

    async def close(self) -> None:
        self.closed = True


def _build_app(channels: Sequence[str] = ("alice", "BOB")) -> tuple[RaidDeckApp, StubService]:
    service = StubService(
        {
            "alice": ChannelState("alice", "Alice", is_live=True, viewer_count=10, game="Chess"),
            "bob": ChannelState("BOB", "Bob", is_live=False),
            "carol": ChannelState("carol", "Carol", is_live=True, viewer_count=500),
        }
    )
    engine = SyncEngine(ChannelDatabase(channels), service, refresh_interval=60)
    return RaidDeckApp(AppConfig(), engine), service


async def _wait_for(pilot, predicate: Callable[[], bool], attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await pilot.pause(0.02)
    raise AssertionError("condition not reached")


def _tile_names(app: RaidDeckApp) -> list[str]:
    return [tile.channel.name for tile in app.query(RaidTile)]


def test_custom_themes_registered() -> None:
    app, _ = _build_app()

    assert "raiddeck-dark" in app.available_themes
    assert "raiddeck-light" in app.available_themes
    assert app.theme == "raiddeck-dark"


def test_config_theme_used_when_provided() -> None:
    engine = SyncEngine(ChannelDatabase(), StubService({}))

    app = RaidDeckApp(AppConfig(theme="raiddeck-light"), engine)

    assert app.theme == "raiddeck-light"


def test_unknown_theme_falls_back_to_default() -> None:
    engine = SyncEngine(ChannelDatabase(), StubService({}))

    app = RaidDeckApp(AppConfig(), engine, theme="no-such-theme")

    assert app.theme == "raiddeck-dark"


def test_format_timedelta() -> None:
    assert _format_timedelta(timedelta(seconds=30)) == "less than a minute"
    assert _format_timedelta(timedelta(minutes=5)) == "5 minutes"
    assert _format_timedelta(timedelta(hours=1, minutes=1)) == "1 hour 1 minute"
    assert _format_timedelta(timedelta(days=2, hours=3, minutes=4)) == "2 days 3 hours"


def test_describe_channel_shows_status_and_raid_age() -> None:
    now = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)
    live = VisibleChannel(
        name="alice",
        display_name="Alice",
        is_live=True,
        viewer_count=1500,
        status=ChannelStatus.LIVE,
        found=True,
        game="Chess",
        last_raided=now - timedelta(hours=3),
    )
    stale_offline = VisibleChannel(
        name="bob", display_name="Bob", status=ChannelStatus.OFFLINE, stale=True, found=True
    )
    unknown = VisibleChannel(name="ghost", display_name="ghost")

    live_text = describe_channel(live, now=now)
    assert "LIVE" in live_text
    assert "1.5K viewers" in live_text
    assert "Chess" in live_text
    assert "Raided 3 hours ago" in live_text
    assert "offline" in describe_channel(stale_offline)
    assert "(stale)" in describe_channel(stale_offline)
    assert "unknown" in describe_channel(unknown)


def test_dashboard_renders_sorted_tiles_with_add_cell() -> None:
    app, service = _build_app()

    async def run_app() -> tuple[list[str], int, bool]:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            names = _tile_names(app)
            add_tiles = len(app.query(AddChannelTile))
            raid_disabled = [
                tile.query_one(".tile-raid").disabled for tile in app.query(RaidTile)
            ]
            assert raid_disabled == [False, True]
            assert "2 of 2" in app.sub_title
        return names, add_tiles, service.closed

    names, add_tiles, closed = asyncio.run(run_app())

    assert names == ["alice", "BOB"]
    assert add_tiles == 1
    assert closed is True


def test_online_only_and_text_filter() -> None:
    app, _ = _build_app()

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)

            app.action_toggle_online_only()
            await _wait_for(pilot, lambda: _tile_names(app) == ["alice"])
            assert app.query_one("#online-only").value is True
            assert app.engine.database.only_online is True

            app.action_toggle_online_only()
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)

            app.set_text_filter("bo")
            await _wait_for(pilot, lambda: _tile_names(app) == ["BOB"])

            app.action_clear_search()
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)

    asyncio.run(run_app())


def test_add_and_remove_channels() -> None:
    app, _ = _build_app()

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)

            app.action_add_channel()
            await _wait_for(pilot, lambda: isinstance(app.screen, AddChannelScreen))
            dialog = app.screen
            dialog.query_one("#add-channel-name").value = "carol"
            dialog.query_one("#add-channel-confirm").press()
            await _wait_for(pilot, lambda: _tile_names(app) == ["carol", "alice", "BOB"])

            tile = next(tile for tile in app.query(RaidTile) if tile.channel.name == "BOB")
            tile.query_one(".tile-remove").press()
            await _wait_for(pilot, lambda: _tile_names(app) == ["carol", "alice"])
            assert "BOB" not in app.engine.database

            assert app.add_channel("ALICE") is False
            assert app.add_channel("   ") is False

    asyncio.run(run_app())


def test_add_dialog_rejects_empty_name() -> None:
    app, _ = _build_app()

    async def run_app() -> None:
        async with app.run_test() as pilot:
            app.action_add_channel()
            await _wait_for(pilot, lambda: isinstance(app.screen, AddChannelScreen))
            dialog = app.screen
            dialog.query_one("#add-channel-confirm").press()
            await pilot.pause()
            assert app.screen is dialog
            dialog.query_one("#add-channel-cancel").press()
            await _wait_for(pilot, lambda: not isinstance(app.screen, AddChannelScreen))
            assert app.engine.database.channels == ("alice", "BOB")

    asyncio.run(run_app())


def test_raid_records_timestamp_and_calls_service() -> None:
    app, service = _build_app()

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            tile = next(tile for tile in app.query(RaidTile) if tile.channel.name == "alice")
            tile.query_one(".tile-raid").press()
            await _wait_for(pilot, lambda: service.raids == ["alice"])
            assert app.engine.database.get_last_raided("alice") is not None
            await _wait_for(
                pilot,
                lambda: any(tile.channel.last_raided for tile in app.query(RaidTile)),
            )

    asyncio.run(run_app())


def test_failed_raid_is_reported_in_status_bar() -> None:
    app, service = _build_app()
    service.fail_raids = True

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            app.raid_channel("alice")
            await _wait_for(pilot, lambda: "failed" in str(app.query_one(StatusBar).status))
            assert app.engine.database.get_last_raided("alice") is not None

    asyncio.run(run_app())


def test_broken_raid_response_keeps_app_running() -> None:
    app, service = _build_app()
    service.raid_error = http.client.IncompleteRead(b"")

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            app.raid_channel("alice")
            await _wait_for(pilot, lambda: "failed" in str(app.query_one(StatusBar).status))
            await pilot.pause()
            assert app.is_running

    asyncio.run(run_app())


def test_repeated_rebuilds_keep_one_add_tile_and_one_raid_per_press() -> None:
    app, service = _build_app()
    requested: list[str] = []

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            original_raid = app.raid_channel

            def counting_raid(name: str) -> None:
                requested.append(name)
                original_raid(name)

            app.raid_channel = counting_raid  # type: ignore[method-assign]
            for _ in range(3):
                app.set_text_filter("a")
                await _wait_for(pilot, lambda: _tile_names(app) == ["alice"])
                app.set_text_filter("")
                await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
                app.post_message(DashboardChanged("refresh"))
                await pilot.pause()

            assert len(app.query(AddChannelTile)) == 1
            assert len(app.query(RaidTile)) == 2
            tile = next(tile for tile in app.query(RaidTile) if tile.channel.name == "alice")
            tile.query_one(".tile-raid").press()
            await _wait_for(pilot, lambda: service.raids == ["alice"])
            await pilot.pause(0.1)

    asyncio.run(run_app())

    assert requested == ["alice"]
    assert service.raids == ["alice"]


def test_raid_age_advances_on_refresh(monkeypatch: pytest.MonkeyPatch) -> None:
    app, _ = _build_app()
    started = datetime.now(tz=timezone.utc)

    class LaterDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return started + timedelta(hours=1)

    def alice_tile() -> RaidTile:
        return next(tile for tile in app.query(RaidTile) if tile.channel.name == "alice")

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(pilot, lambda: len(_tile_names(app)) == 2)
            app.engine.database.set_raided("alice", started - timedelta(hours=2, seconds=30))
            await _wait_for(pilot, lambda: alice_tile().channel.last_raided is not None)
            before = alice_tile()

            app.post_message(DashboardChanged("refresh"))
            await pilot.pause(0.1)
            assert alice_tile() is before

            monkeypatch.setattr(app_module, "datetime", LaterDatetime)
            app.post_message(DashboardChanged("refresh"))
            await _wait_for(pilot, lambda: alice_tile() is not before)

    asyncio.run(run_app())
