"""Synchronization engine keeping the channel cache in step with the remote service.

All cache writes happen on a single actor task. Timer ticks, refresh results,
push events and track/untrack requests reach it through one ordered
:class:`asyncio.Queue`; remote calls run in their own tasks and post their
results back, so push delivery and the UI never wait behind a slow refresh.
"""
from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, List, Mapping, Optional, Sequence

from .cache import CachedChannel, ChannelStatusCache
from .database import ChannelDatabase, DatabaseChange, channel_key
from .logging_utils import get_logger
from .service import ChannelService, ChannelState, SubscriptionHandle

log = get_logger(__name__)

DEFAULT_REFRESH_INTERVAL = 10.0


@dataclass(frozen=True, slots=True)
class ChannelsChanged:
    """Sent to engine listeners whenever the visible inputs may have changed."""

    reason: str
    channels: tuple[str, ...] = ()


@dataclass(slots=True)
class RefreshOutcome:
    """Result of one :meth:`SyncEngine.bulk_refresh` call."""

    requested: tuple[str, ...]
    updated: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class _Tick:
    reason: str = "interval"


@dataclass(frozen=True, slots=True)
class _Merge:
    names: tuple[str, ...]
    results: Optional[Mapping[str, Optional[ChannelState]]]
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class _Push:
    name: str
    state: ChannelState


@dataclass(frozen=True, slots=True)
class _Track:
    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class _Untrack:
    name: str


@dataclass(frozen=True, slots=True)
class _Notify:
    reason: str


_QueueItem = tuple[object, Optional["asyncio.Future[None]"]]
Listener = Callable[[ChannelsChanged], None]


class SyncEngine:
    """Owns the refresh cycle, push subscriptions and the status cache."""

    def __init__(
        self,
        database: ChannelDatabase,
        service: ChannelService,
        *,
        cache: Optional[ChannelStatusCache] = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        if refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        self._database = database
        self._service = service
        self._cache = cache if cache is not None else ChannelStatusCache()
        self._refresh_interval = refresh_interval
        self._queue: "asyncio.Queue[_QueueItem]" = asyncio.Queue()
        self._listeners: List[Listener] = []
        self._subscriptions: Dict[str, SubscriptionHandle] = {}
        self._pending_registrations: set[str] = set()
        self._initializing = True
        self._stop_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._actor_task: Optional[asyncio.Task[None]] = None
        self._ticker_task: Optional[asyncio.Task[None]] = None
        self._refresh_task: Optional[asyncio.Task[Any]] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        for name in database.channels:
            self._cache.ensure(name)
        self._detach_database = database.subscribe(self._on_database_change)

    # -- public state --------------------------------------------------

    @property
    def cache(self) -> ChannelStatusCache:
        return self._cache

    @property
    def database(self) -> ChannelDatabase:
        return self._database

    @property
    def service(self) -> ChannelService:
        return self._service

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @property
    def initializing(self) -> bool:
        return self._initializing

    @property
    def running(self) -> bool:
        return self._actor_task is not None and not self._actor_task.done()

    def is_registered(self, name: str) -> bool:
        return channel_key(name) in self._subscriptions

    def snapshot(self) -> Dict[str, CachedChannel]:
        return self._cache.snapshot()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; the returned callable removes it."""

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        """Start the actor and ticker, then run initialization in the background."""

        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        self._initializing = True
        self._actor_task = self._loop.create_task(self._run_actor(), name="sync-actor")
        self._ticker_task = self._loop.create_task(self._run_ticker(), name="sync-ticker")
        self._spawn(self._initialize())
        log.info(
            "Sync engine started for %d channel(s); refresh every %.1fs",
            len(self._database),
            self._refresh_interval,
        )

    async def stop(self) -> None:
        """Cancel the scheduling loop and any in-flight background work."""

        self._stop_event.set()
        tasks = [
            task
            for task in (self._ticker_task, self._actor_task, *self._tasks)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        while not self._queue.empty():
            _, done = self._queue.get_nowait()
            if done is not None and not done.done():
                done.cancel()
        self._actor_task = None
        self._ticker_task = None
        self._refresh_task = None
        log.info("Sync engine stopped")

    def close(self) -> None:
        """Stop listening to the database."""

        self._detach_database()

    def request_refresh(self) -> None:
        """Run a refresh cycle now instead of waiting for the next tick."""

        self._post(_Tick("requested"))

    # -- operations ----------------------------------------------------

    async def bulk_refresh(self, names: Sequence[str]) -> RefreshOutcome:
        """Fetch state for *names* in one batched lookup and merge it.

        Never raises for remote failures: not-found channels are flagged
        individually, and a failed call flags every requested channel stale.
        """

        requested = tuple(dict.fromkeys(name for name in names if name.strip()))
        outcome = RefreshOutcome(requested)
        if not requested:
            return outcome
        results: Optional[Mapping[str, Optional[ChannelState]]] = None
        try:
            results = await self._service.lookup_many(requested)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            outcome.error = str(exc) or exc.__class__.__name__
            log.warning("Refresh of %d channel(s) failed: %s", len(requested), outcome.error)
        else:
            by_key = {channel_key(name): state for name, state in results.items()}
            for name in requested:
                state = by_key.get(channel_key(name))
                (outcome.updated if state is not None else outcome.missing).append(name)
            if outcome.missing:
                log.info("Channels not found: %s", ", ".join(outcome.missing))
        await self._submit(_Merge(requested, results, outcome.error))
        return outcome

    async def register_for_events(self, name: str) -> bool:
        """Subscribe *name* to push updates; registering twice is a no-op."""

        key = channel_key(name)
        if key in self._subscriptions or key in self._pending_registrations:
            return True
        self._pending_registrations.add(key)
        try:
            handle = await self._service.subscribe(
                name, functools.partial(self.on_push_event, name)
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("Live updates unavailable for %s: %s", name, exc)
            return False
        finally:
            self._pending_registrations.discard(key)
        if name not in self._database:
            # Removed while the subscription was being set up.
            await self._release(handle)
            return False
        self._subscriptions[key] = handle
        log.debug("Registered %s for live updates", name)
        return True

    async def unregister_from_events(self, name: str) -> bool:
        """Drop the push subscription for *name*, if any."""

        handle = self._subscriptions.pop(channel_key(name), None)
        if handle is None:
            return False
        await self._release(handle)
        log.debug("Unregistered %s from live updates", name)
        return True

    def on_push_event(self, name: str, state: ChannelState) -> None:
        """Merge a pushed state change; callable from any thread."""

        message = _Push(name, state)
        loop = self._loop
        if loop is None or not self.running:
            self._handle(message)
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            self._queue.put_nowait((message, None))
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, (message, None))

    # -- internals -----------------------------------------------------

    async def _release(self, handle: SubscriptionHandle) -> None:
        try:
            await self._service.unsubscribe(handle)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("Failed to unsubscribe %s: %s", handle.channel, exc)

    async def _initialize(self) -> None:
        names = tuple(self._database.channels)
        try:
            await self._submit(_Track(names))
            await self.bulk_refresh(names)
            await asyncio.gather(*(self.register_for_events(name) for name in names))
        finally:
            self._initializing = False
            log.info("Initialization finished for %d channel(s)", len(names))
            self._post(_Notify("initialized"))

    async def _load_channel(self, name: str) -> None:
        await self.bulk_refresh([name])
        if name in self._database:
            await self.register_for_events(name)

    async def _run_cycle(self) -> None:
        await self.bulk_refresh(list(self._database.channels))

    async def _run_ticker(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._refresh_interval)
            except asyncio.TimeoutError:
                self._post(_Tick())

    async def _run_actor(self) -> None:
        while True:
            message, done = await self._queue.get()
            try:
                self._handle(message)
            except Exception:
                log.exception("Failed to apply %s", type(message).__name__)
            finally:
                if done is not None and not done.done():
                    done.set_result(None)

    async def _submit(self, message: object) -> None:
        """Hand *message* to the actor and wait until it has been applied."""

        if not self.running:
            self._handle(message)
            return
        done: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((message, done))
        await done

    def _post(self, message: object) -> None:
        if self.running:
            self._queue.put_nowait((message, None))
        else:
            self._handle(message)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task[Any]]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.debug("No running event loop; background sync work skipped")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Background sync task failed", exc_info=exc)

    def _handle(self, message: object) -> None:
        if isinstance(message, _Merge):
            self._apply_merge(message)
        elif isinstance(message, _Push):
            self._apply_push(message)
        elif isinstance(message, _Tick):
            self._start_cycle(message.reason)
        elif isinstance(message, _Track):
            tracked = [name for name in message.names if name in self._database]
            if self._cache.mark_loading(tracked):
                self._notify("loading", tuple(tracked))
        elif isinstance(message, _Untrack):
            if self._cache.discard(message.name):
                self._notify("removed", (message.name,))
        elif isinstance(message, _Notify):
            self._notify(message.reason)
        else:  # pragma: no cover - programming error
            raise TypeError(f"Unexpected message {message!r}")

    def _start_cycle(self, reason: str) -> None:
        if self._initializing:
            log.debug("Skipping %s refresh; initialization in progress", reason)
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            log.debug("Skipping %s refresh; previous cycle still running", reason)
            return
        log.debug("Starting %s refresh of %d channel(s)", reason, len(self._database))
        self._refresh_task = self._spawn(self._run_cycle())

    def _apply_merge(self, merge: _Merge) -> None:
        changed: List[str] = []
        if merge.results is None:
            message = merge.error or "lookup failed"
            for name in merge.names:
                if self._cache.mark_failed(name, message):
                    changed.append(name)
        else:
            by_key = {channel_key(name): state for name, state in merge.results.items()}
            for name in merge.names:
                state = by_key.get(channel_key(name))
                if state is None:
                    updated = self._cache.mark_failed(name, "channel not found")
                else:
                    updated = self._cache.apply(name, state)
                if updated:
                    changed.append(name)
        self._notify("refresh", tuple(changed))
        if not self._initializing:
            for name in merge.names:
                entry = self._cache.get(name)
                if entry is not None and entry.found and not self.is_registered(name):
                    self._spawn(self.register_for_events(name))

    def _apply_push(self, push: _Push) -> None:
        if push.name not in self._database or push.name not in self._cache:
            log.debug("Dropping push event for untracked channel %s", push.name)
            return
        if self._cache.apply(push.name, push.state):
            log.debug(
                "Push update for %s: live=%s viewers=%d",
                push.name,
                push.state.is_live,
                push.state.viewer_count,
            )
            self._notify("push", (push.name,))

    def _notify(self, reason: str, channels: tuple[str, ...] = ()) -> None:
        change = ChannelsChanged(reason, channels)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                log.exception("Sync listener failed for %s", reason)

    def _on_database_change(self, change: DatabaseChange) -> None:
        if change.kind == "added" and change.channel:
            self._post(_Track((change.channel,)))
            self._spawn(self._load_channel(change.channel))
        elif change.kind == "removed" and change.channel:
            self._post(_Untrack(change.channel))
            self._spawn(self.unregister_from_events(change.channel))
        else:
            self._post(_Notify(change.kind))


__all__ = ["ChannelsChanged", "RefreshOutcome", "SyncEngine", "DEFAULT_REFRESH_INTERVAL"]
