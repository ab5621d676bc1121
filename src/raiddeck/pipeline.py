"""Turn tracked channels plus cached state into the ordered dashboard list."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from .cache import CachedChannel, ChannelStatus
from .database import channel_key


@dataclass(frozen=True, slots=True)
class VisibleChannel:
    """Display-ready view of one channel."""

    name: str
    display_name: str
    is_live: bool = False
    viewer_count: int = 0
    status: ChannelStatus = ChannelStatus.UNKNOWN
    stale: bool = False
    found: bool = False
    avatar_url: Optional[str] = None
    game: Optional[str] = None
    title: Optional[str] = None
    last_raided: Optional[datetime] = None


def _visible(
    name: str, entry: Optional[CachedChannel], last_raided: Optional[datetime]
) -> VisibleChannel:
    if entry is None:
        return VisibleChannel(name=name, display_name=name, last_raided=last_raided)
    state = entry.state
    return VisibleChannel(
        name=name,
        display_name=entry.display_name,
        is_live=entry.is_live,
        viewer_count=entry.viewer_count,
        status=entry.status,
        stale=entry.stale,
        found=entry.found,
        avatar_url=state.avatar_url if state else None,
        game=state.game if state and state.is_live else None,
        title=state.title if state and state.is_live else None,
        last_raided=last_raided,
    )


def matches_filter(channel: VisibleChannel, text_filter: str) -> bool:
    """Case-insensitive substring match against display name or identifier."""

    needle = text_filter.strip().casefold()
    if not needle:
        return True
    return needle in channel.display_name.casefold() or needle in channel.name.casefold()


def sort_key(channel: VisibleChannel) -> tuple[int, str]:
    """Viewer count descending, then display name ascending (ordinal)."""

    return (-channel.viewer_count, channel.display_name)


def filter_and_sort(
    channels: Sequence[str],
    snapshot: Mapping[str, CachedChannel],
    *,
    text_filter: str = "",
    only_online: bool = False,
    last_raided: Optional[Mapping[str, Optional[datetime]]] = None,
) -> List[VisibleChannel]:
    """Return the visible channels in display order.

    ``channels`` is the tracked list from the store and defines membership;
    ``snapshot`` and ``last_raided`` are keyed by :func:`channel_key`.
    Channels without a cache entry are shown as unknown.
    """

    raided = last_raided or {}
    visible: List[VisibleChannel] = []
    for name in channels:
        key = channel_key(name)
        channel = _visible(name, snapshot.get(key), raided.get(key))
        if not matches_filter(channel, text_filter):
            continue
        if only_online and not channel.is_live:
            continue
        visible.append(channel)
    visible.sort(key=sort_key)
    return visible


__all__ = ["VisibleChannel", "filter_and_sort", "matches_filter", "sort_key"]
