"""In-memory live state per tracked channel."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional

from .database import channel_key
from .logging_utils import get_logger
from .service import ChannelState

log = get_logger(__name__)


class ChannelStatus(str, Enum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    LIVE = "live"
    OFFLINE = "offline"


@dataclass(slots=True)
class CachedChannel:
    """Last good remote state for a channel plus refresh bookkeeping.

    ``stale`` is set when the most recent refresh failed; ``state`` keeps
    the values from the last successful one.
    """

    name: str
    state: Optional[ChannelState] = None
    status: ChannelStatus = ChannelStatus.UNKNOWN
    stale: bool = False
    last_updated: Optional[datetime] = None
    last_error: Optional[str] = None
    _version: int = field(default=0, repr=False)

    @property
    def found(self) -> bool:
        return self.state is not None

    @property
    def display_name(self) -> str:
        return self.state.display_name if self.state is not None else self.name

    @property
    def is_live(self) -> bool:
        return self.state is not None and self.state.is_live

    @property
    def viewer_count(self) -> int:
        if self.state is None or not self.state.is_live:
            return 0
        return self.state.viewer_count

    @property
    def version(self) -> int:
        """Counter bumped on every change to this entry."""

        return self._version


class ChannelStatusCache:
    """Map from channel key to :class:`CachedChannel`.

    Only the synchronization engine writes to the cache; readers take
    :meth:`snapshot` copies.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CachedChannel] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and channel_key(name) in self._entries

    def get(self, name: str) -> Optional[CachedChannel]:
        return self._entries.get(channel_key(name))

    def names(self) -> list[str]:
        return [entry.name for entry in self._entries.values()]

    def snapshot(self) -> Dict[str, CachedChannel]:
        """Return copies of every entry keyed by channel key."""

        return {
            key: CachedChannel(
                name=entry.name,
                state=entry.state,
                status=entry.status,
                stale=entry.stale,
                last_updated=entry.last_updated,
                last_error=entry.last_error,
                _version=entry._version,
            )
            for key, entry in self._entries.items()
        }

    def ensure(self, name: str) -> CachedChannel:
        key = channel_key(name)
        entry = self._entries.get(key)
        if entry is None:
            entry = CachedChannel(name=name.strip())
            self._entries[key] = entry
        return entry

    def discard(self, name: str) -> bool:
        return self._entries.pop(channel_key(name), None) is not None

    def mark_loading(self, names: Iterable[str]) -> bool:
        """Move never-loaded entries into the loading state."""

        changed = False
        for name in names:
            entry = self.ensure(name)
            if entry.state is None and entry.status is not ChannelStatus.LOADING:
                entry.status = ChannelStatus.LOADING
                entry._version += 1
                changed = True
        return changed

    def apply(self, name: str, state: ChannelState, *, now: Optional[datetime] = None) -> bool:
        """Store a successfully fetched *state*; returns ``True`` if anything changed."""

        entry = self._entries.get(channel_key(name))
        if entry is None:
            return False
        status = ChannelStatus.LIVE if state.is_live else ChannelStatus.OFFLINE
        changed = entry.state != state or entry.status is not status or entry.stale
        entry.state = state
        entry.status = status
        entry.stale = False
        entry.last_error = None
        entry.last_updated = now or datetime.now(tz=timezone.utc)
        if changed:
            entry._version += 1
        return changed

    def mark_failed(self, name: str, message: str) -> bool:
        """Flag an entry whose refresh failed, keeping its last good values."""

        entry = self._entries.get(channel_key(name))
        if entry is None:
            return False
        changed = not entry.stale or entry.last_error != message
        entry.stale = True
        entry.last_error = message
        if entry.state is None:
            entry.status = ChannelStatus.UNKNOWN
        if changed:
            entry._version += 1
            log.debug("Marked %s stale: %s", entry.name, message)
        return changed


__all__ = ["CachedChannel", "ChannelStatus", "ChannelStatusCache"]
