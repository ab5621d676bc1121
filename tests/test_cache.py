from __future__ import annotations

from raiddeck.cache import ChannelStatus, ChannelStatusCache
from raiddeck.service import ChannelState


def _state(name: str, *, live: bool = False, viewers: int = 0) -> ChannelState:
    return ChannelState(name=name, display_name=name.title(), is_live=live, viewer_count=viewers)


def test_ensure_is_case_insensitive() -> None:
    cache = ChannelStatusCache()

    first = cache.ensure("Alice")
    second = cache.ensure("ALICE")

    assert first is second
    assert len(cache) == 1
    assert "alice" in cache
    assert cache.names() == ["Alice"]


def test_mark_loading_only_touches_unloaded_entries() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")
    cache.ensure("bob")
    cache.apply("bob", _state("bob"))

    assert cache.mark_loading(["alice", "bob"]) is True
    assert cache.mark_loading(["alice"]) is False

    assert cache.get("alice").status is ChannelStatus.LOADING
    assert cache.get("bob").status is ChannelStatus.OFFLINE


def test_apply_reports_changes_and_bumps_version() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")

    assert cache.apply("alice", _state("alice", live=True, viewers=12)) is True
    version = cache.get("alice").version
    assert cache.apply("alice", _state("alice", live=True, viewers=12)) is False
    assert cache.get("alice").version == version

    entry = cache.get("alice")
    assert entry.status is ChannelStatus.LIVE
    assert entry.viewer_count == 12
    assert entry.display_name == "Alice"
    assert entry.last_updated is not None


def test_apply_ignores_untracked_channels() -> None:
    cache = ChannelStatusCache()

    assert cache.apply("ghost", _state("ghost")) is False
    assert "ghost" not in cache


def test_offline_state_reports_zero_viewers() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")

    cache.apply("alice", _state("alice", live=False, viewers=40))

    assert cache.get("alice").viewer_count == 0


def test_mark_failed_keeps_last_good_values() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")
    cache.apply("alice", _state("alice", live=True, viewers=5))

    assert cache.mark_failed("alice", "timeout") is True
    assert cache.mark_failed("alice", "timeout") is False

    entry = cache.get("alice")
    assert entry.stale is True
    assert entry.last_error == "timeout"
    assert entry.status is ChannelStatus.LIVE
    assert entry.viewer_count == 5


def test_mark_failed_without_state_is_unknown() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")
    cache.mark_loading(["alice"])

    cache.mark_failed("alice", "channel not found")

    entry = cache.get("alice")
    assert entry.status is ChannelStatus.UNKNOWN
    assert entry.found is False
    assert entry.viewer_count == 0


def test_snapshot_is_detached_from_cache() -> None:
    cache = ChannelStatusCache()
    cache.ensure("alice")

    snapshot = cache.snapshot()
    cache.apply("alice", _state("alice", live=True, viewers=3))

    assert snapshot["alice"].status is ChannelStatus.UNKNOWN
    assert cache.snapshot()["alice"].status is ChannelStatus.LIVE


def test_discard_removes_entry() -> None:
    cache = ChannelStatusCache()
    cache.ensure("Bob")

    assert cache.discard("BOB") is True
    assert cache.discard("bob") is False
    assert cache.get("bob") is None
