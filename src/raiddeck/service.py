"""Remote channel service contract and the Twitch Helix implementation."""
from __future__ import annotations

import asyncio
import http.client
import itertools
import json
from dataclasses import dataclass, replace
from typing import Callable, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable
from urllib import error, request
from urllib.parse import urlencode

from .config import Credentials
from .database import channel_key
from .errors import RaidError, RemoteLookupError, RemoteSubscriptionError
from .logging_utils import get_logger

log = get_logger(__name__)

HELIX_BASE_URL = "https://api.twitch.tv/helix"
HELIX_BATCH_SIZE = 100

# Decode failures (JSON, UTF-8) are ValueErrors; broken responses raise HTTPException.
_TRANSPORT_ERRORS = (error.URLError, OSError, http.client.HTTPException, ValueError)


@dataclass(frozen=True, slots=True)
class ChannelState:
    """Snapshot of a channel as reported by the remote service."""

    name: str
    display_name: str
    is_live: bool = False
    viewer_count: int = 0
    avatar_url: Optional[str] = None
    game: Optional[str] = None
    title: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    """Token returned by :meth:`ChannelService.subscribe`."""

    channel: str
    id: int


ChangeCallback = Callable[[ChannelState], None]


@runtime_checkable
class ChannelService(Protocol):
    """Capabilities the synchronization engine needs from the remote side."""

    async def lookup_many(self, names: Sequence[str]) -> Dict[str, Optional[ChannelState]]:
        """Return state per requested name; ``None`` marks a channel not found."""

    async def subscribe(self, name: str, on_change: ChangeCallback) -> SubscriptionHandle:
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        ...


def _coerce_count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def _fetch_json(
    url: str,
    headers: Mapping[str, str],
    timeout: float,
    *,
    method: str = "GET",
) -> dict[str, object]:
    log.debug("%s %s (timeout=%s)", method, url, timeout)
    req = request.Request(url, method=method)
    for key, value in headers.items():
        req.add_header(key, value)
    with request.urlopen(req, timeout=timeout) as response:  # type: ignore[call-arg]
        payload = response.read().decode("utf8")
    if not payload.strip():
        return {}
    return json.loads(payload)


class HelixChannelService:
    """:class:`ChannelService` backed by the Twitch Helix REST API.

    Lookups combine ``/users`` (identity, avatar) with ``/streams`` (live
    state, viewers, game) in batches of 100 logins. Live-update subscriptions
    are kept locally; EventSub notification payloads fed to
    :meth:`handle_notification` are dispatched to the matching subscribers.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        timeout: float = 10.0,
        base_url: str = HELIX_BASE_URL,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._known: Dict[str, ChannelState] = {}
        self._subscribers: Dict[str, Dict[int, ChangeCallback]] = {}
        self._handle_ids = itertools.count(1)

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Client-ID": self._credentials.client_id,
            "Authorization": f"Bearer {self._credentials.access_token}",
        }

    async def _get(self, endpoint: str, params: Sequence[tuple[str, str]]) -> list[dict]:
        url = f"{self._base_url}/{endpoint}?{urlencode(params)}"
        try:
            payload = await asyncio.to_thread(_fetch_json, url, self._headers, self._timeout)
        except _TRANSPORT_ERRORS as exc:
            raise RemoteLookupError(f"Helix {endpoint} request failed: {exc}") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise RemoteLookupError(f"Helix {endpoint} response has no data list")
        return [entry for entry in data if isinstance(entry, dict)]

    async def lookup_many(self, names: Sequence[str]) -> Dict[str, Optional[ChannelState]]:
        requested = {channel_key(name): name for name in names if name.strip()}
        results: Dict[str, Optional[ChannelState]] = {name: None for name in requested.values()}
        logins = list(requested)
        for start in range(0, len(logins), HELIX_BATCH_SIZE):
            batch = logins[start:start + HELIX_BATCH_SIZE]
            users = await self._get("users", [("login", login) for login in batch])
            streams = await self._get(
                "streams",
                [("first", str(len(batch))), *(("user_login", login) for login in batch)],
            )
            live = {
                str(stream.get("user_login", "")).lower(): stream
                for stream in streams
                if stream.get("type", "live") == "live"
            }
            for user in users:
                login = str(user.get("login", "")).lower()
                if login not in requested:
                    continue
                stream = live.get(login)
                state = ChannelState(
                    name=requested[login],
                    display_name=str(user.get("display_name") or login),
                    is_live=stream is not None,
                    viewer_count=_coerce_count(stream.get("viewer_count")) if stream else 0,
                    avatar_url=user.get("profile_image_url") or None,
                    game=(stream.get("game_name") or None) if stream else None,
                    title=(stream.get("title") or None) if stream else None,
                    user_id=str(user["id"]) if user.get("id") else None,
                )
                self._known[login] = state
                results[requested[login]] = state
        found = sum(1 for state in results.values() if state is not None)
        log.debug("Helix lookup resolved %d of %d channel(s)", found, len(results))
        return results

    async def subscribe(self, name: str, on_change: ChangeCallback) -> SubscriptionHandle:
        key = channel_key(name)
        known = self._known.get(key)
        if known is None or known.user_id is None:
            raise RemoteSubscriptionError(f"Cannot subscribe to unknown channel {name}")
        handle = SubscriptionHandle(channel=name, id=next(self._handle_ids))
        self._subscribers.setdefault(key, {})[handle.id] = on_change
        log.debug("Subscribed to live updates for %s (handle %d)", name, handle.id)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        key = channel_key(handle.channel)
        callbacks = self._subscribers.get(key)
        if not callbacks or callbacks.pop(handle.id, None) is None:
            raise RemoteSubscriptionError(f"Unknown subscription handle {handle.id}")
        if not callbacks:
            del self._subscribers[key]
        log.debug("Unsubscribed live updates for %s", handle.channel)

    def handle_notification(self, message: Mapping[str, object]) -> bool:
        """Dispatch an EventSub ``stream.online``/``stream.offline`` notification.

        Returns ``True`` when the message was applied to a known channel.
        """

        metadata = message.get("metadata")
        payload = message.get("payload")
        if not isinstance(metadata, dict) or not isinstance(payload, dict):
            return False
        if metadata.get("message_type") != "notification":
            return False
        subscription = payload.get("subscription")
        event = payload.get("event")
        if not isinstance(subscription, dict) or not isinstance(event, dict):
            return False
        kind = subscription.get("type")
        if kind not in ("stream.online", "stream.offline"):
            return False
        login = str(event.get("broadcaster_user_login", "")).lower()
        known = self._known.get(login)
        if not login or known is None:
            log.debug("Ignoring %s for untracked channel %r", kind, login)
            return False
        is_live = kind == "stream.online"
        state = replace(
            known,
            is_live=is_live,
            viewer_count=known.viewer_count if is_live else 0,
            display_name=str(event.get("broadcaster_user_name") or known.display_name),
        )
        self._known[login] = state
        for callback in list(self._subscribers.get(login, {}).values()):
            callback(state)
        return True

    async def _user_id(self, name: str) -> str:
        key = channel_key(name)
        known = self._known.get(key)
        if known is None or known.user_id is None:
            try:
                await self.lookup_many([name])
            except RemoteLookupError as exc:
                raise RaidError(f"Cannot resolve channel {name}: {exc}") from exc
            known = self._known.get(key)
        if known is None or known.user_id is None:
            raise RaidError(f"Channel {name} was not found")
        return known.user_id

    async def start_raid(self, name: str) -> None:
        """Start a raid from the configured channel to *name*."""

        source = self._credentials.channel_name
        if not source:
            raise RaidError("No source channel configured for raids")
        params = urlencode(
            {
                "from_broadcaster_id": await self._user_id(source),
                "to_broadcaster_id": await self._user_id(name),
            }
        )
        url = f"{self._base_url}/raids?{params}"
        try:
            await asyncio.to_thread(
                _fetch_json, url, self._headers, self._timeout, method="POST"
            )
        except _TRANSPORT_ERRORS as exc:
            raise RaidError(f"Raid to {name} failed: {exc}") from exc
        log.info("Raid from %s to %s started", source, name)

    async def close(self) -> None:
        self._subscribers.clear()


__all__ = [
    "ChannelService",
    "ChannelState",
    "HelixChannelService",
    "SubscriptionHandle",
]
