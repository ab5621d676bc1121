"""Persisted list of tracked channels and display preferences."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Literal, Mapping, Optional

from .errors import ConfigurationError, NotFoundError, ParseError
from .logging_utils import get_logger

log = get_logger(__name__)

ChangeKind = Literal["added", "removed", "raided", "preferences"]


def channel_key(name: str) -> str:
    """Return the case-insensitive lookup key for a channel name."""

    return name.strip().casefold()


@dataclass(frozen=True, slots=True)
class DatabaseChange:
    """Notification sent to listeners after every store mutation."""

    kind: ChangeKind
    channel: Optional[str] = None


DatabaseListener = Callable[[DatabaseChange], None]


def _parse_timestamp(channel: str, value: object) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ParseError(f"LastRaided entry for {channel!r} is not a timestamp: {value!r}")
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise ParseError(f"LastRaided entry for {channel!r} is not a timestamp: {value!r}") from exc


def _parse_flag(path: Path, data: Mapping[str, object], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ParseError(f"'{key}' in {path} must be true or false, got {value!r}")
    return value


class ChannelDatabase:
    """Ordered, case-insensitively unique channel list plus preferences.

    Every mutation notifies the registered listeners and, when ``auto_save``
    is enabled and a path has been established, writes the store back to disk
    synchronously. A failed autosave is logged and kept on
    :attr:`last_save_error`; the in-memory change stands.
    """

    def __init__(
        self,
        channels: Iterable[str] = (),
        *,
        only_online: bool = False,
        auto_save: bool = False,
        last_raided: Optional[Mapping[str, Optional[datetime]]] = None,
        path: Optional[Path] = None,
    ) -> None:
        self._channels: List[str] = []
        self._keys: set[str] = set()
        self._last_raided: Dict[str, Optional[datetime]] = {}
        self._only_online = only_online
        self._auto_save = auto_save
        self._path = path
        self._listeners: List[DatabaseListener] = []
        self.last_save_error: Optional[OSError] = None
        for channel in channels:
            name = channel.strip()
            key = channel_key(name)
            if not name:
                continue
            if key in self._keys:
                log.warning("Dropping duplicate channel %s", name)
                continue
            self._channels.append(name)
            self._keys.add(key)
        raided = {channel_key(name): when for name, when in (last_raided or {}).items()}
        for name in self._channels:
            self._last_raided[name] = raided.get(channel_key(name))

    # -- persistence ---------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "ChannelDatabase":
        """Load a store from *path*.

        Raises :class:`NotFoundError` when the file is absent and
        :class:`ParseError` when it is not a valid store document.
        """

        target = Path(path)
        if not target.exists():
            raise NotFoundError(f"Database file not found: {target}", target)
        try:
            raw = target.read_text(encoding="utf8")
        except OSError as exc:
            raise ParseError(f"Failed to read database file {target}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Failed to parse database file {target}: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"Database file {target} does not contain an object")

        channels_raw = data.get("Channels", [])
        if not isinstance(channels_raw, list) or not all(
            isinstance(channel, str) for channel in channels_raw
        ):
            raise ParseError(f"'Channels' in {target} must be a list of strings")
        raided_raw = data.get("LastRaided") or {}
        if not isinstance(raided_raw, dict):
            raise ParseError(f"'LastRaided' in {target} must be an object")
        last_raided = {
            str(name): _parse_timestamp(str(name), value) for name, value in raided_raw.items()
        }
        database = cls(
            channels_raw,
            only_online=_parse_flag(target, data, "OnlyOnline"),
            auto_save=_parse_flag(target, data, "AutoSave"),
            last_raided=last_raided,
            path=target,
        )
        log.info("Loaded %d channel(s) from %s", len(database), target)
        return database

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def to_dict(self) -> dict[str, object]:
        return {
            "OnlyOnline": self._only_online,
            "Channels": list(self._channels),
            "LastRaided": {
                name: when.isoformat() if when is not None else None
                for name, when in self._last_raided.items()
            },
            "AutoSave": self._auto_save,
        }

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the store to *path*, or to the established path.

        An explicit *path* becomes the established path only when none was
        set before.
        """

        target = Path(path) if path is not None else self._path
        if target is None:
            raise ConfigurationError("No target path given to save the database at")
        if self._path is None:
            self._path = target
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf8")
        log.debug("Saved database to %s", target)
        return target

    # -- preferences ---------------------------------------------------

    @property
    def only_online(self) -> bool:
        return self._only_online

    @only_online.setter
    def only_online(self, value: bool) -> None:
        if value == self._only_online:
            return
        self._only_online = value
        self._changed(DatabaseChange("preferences"))

    @property
    def auto_save(self) -> bool:
        return self._auto_save

    @auto_save.setter
    def auto_save(self, value: bool) -> None:
        if value == self._auto_save:
            return
        self._auto_save = value
        self._changed(DatabaseChange("preferences"))

    # -- channels ------------------------------------------------------

    @property
    def channels(self) -> tuple[str, ...]:
        return tuple(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and channel_key(name) in self._keys

    def find(self, name: str) -> Optional[str]:
        """Return the stored spelling of *name*, if tracked."""

        key = channel_key(name)
        for channel in self._channels:
            if channel_key(channel) == key:
                return channel
        return None

    def add_channel(self, name: str) -> bool:
        """Track *name*; returns ``False`` if it is already present."""

        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Channel name cannot be empty")
        key = channel_key(cleaned)
        if key in self._keys:
            log.debug("Channel %s is already tracked", cleaned)
            return False
        self._channels.append(cleaned)
        self._keys.add(key)
        self._last_raided.setdefault(cleaned, None)
        log.info("Added channel %s", cleaned)
        self._changed(DatabaseChange("added", cleaned))
        return True

    def remove_channel(self, name: str) -> bool:
        """Stop tracking *name*; returns ``False`` if it was not tracked."""

        stored = self.find(name)
        if stored is None:
            return False
        self._channels.remove(stored)
        self._keys.discard(channel_key(stored))
        self._last_raided.pop(stored, None)
        log.info("Removed channel %s", stored)
        self._changed(DatabaseChange("removed", stored))
        return True

    def set_raided(self, name: str, when: datetime) -> None:
        stored = self.find(name)
        if stored is None:
            log.warning("Ignoring raid timestamp for untracked channel %s", name)
            return
        self._last_raided[stored] = when
        self._changed(DatabaseChange("raided", stored))

    def get_last_raided(self, name: str) -> Optional[datetime]:
        stored = self.find(name)
        if stored is None:
            return None
        return self._last_raided.get(stored)

    def last_raided(self) -> dict[str, Optional[datetime]]:
        """Return a copy of the last-raided map keyed by channel key."""

        return {channel_key(name): when for name, when in self._last_raided.items()}

    # -- notifications -------------------------------------------------

    def subscribe(self, listener: DatabaseListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unregisters it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, change: DatabaseChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                log.exception("Database listener failed for %s", change)
        if self._auto_save and self._path is not None:
            try:
                self.save()
            except OSError as exc:
                self.last_save_error = exc
                log.error("Autosave to %s failed: %s", self._path, exc)
            else:
                self.last_save_error = None


__all__ = [
    "ChannelDatabase",
    "DatabaseChange",
    "channel_key",
]
