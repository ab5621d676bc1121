"""Textual application rendering the raid target dashboard."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

try:
    from textual import on
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Grid, Horizontal, Vertical, VerticalScroll
    from textual.message import Message
    from textual.reactive import reactive
    from textual.screen import ModalScreen
    from textual.widgets import (
        Button,
        Checkbox,
        Footer,
        Header,
        Input,
        Label,
        Static,
        TabbedContent,
        TabPane,
    )
except ModuleNotFoundError as exc:  # pragma: no cover - dependency guard
    raise ModuleNotFoundError(
        "The 'textual' package is required to run raiddeck. "
        "Install dependencies with 'pip install -e .[dev]' or 'pip install raiddeck'."
    ) from exc

from rich.markup import escape

from .cache import ChannelStatus
from .config import AppConfig
from .errors import RemoteError
from .grid import GridLayout, layout_grid
from .log_viewer import LogViewer
from .logging_utils import get_logger
from .pipeline import VisibleChannel, filter_and_sort
from .sync import ChannelsChanged, SyncEngine
from .themes import CUSTOM_THEMES, DEFAULT_THEME_NAME

log = get_logger(__name__)


def _format_timedelta(delta: timedelta) -> str:
    """Return a human-friendly description of ``delta``."""

    seconds = int(delta.total_seconds())
    if seconds < 60:
        return "less than a minute"
    minutes, _ = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    parts: list[str] = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes and not days:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(parts)


def _format_viewers(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 10_000:
        return f"{count / 1_000:.0f}K"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def describe_channel(channel: VisibleChannel, *, now: Optional[datetime] = None) -> str:
    """Return the tile markup for *channel*."""

    lines = [f"[b]{escape(channel.display_name)}[/b]"]
    if channel.status is ChannelStatus.LIVE:
        badge = f"[bold red]● LIVE[/bold red] {_format_viewers(channel.viewer_count)} viewers"
    elif channel.status is ChannelStatus.OFFLINE:
        badge = "[dim]○ offline[/dim]"
    elif channel.status is ChannelStatus.LOADING:
        badge = "[dim]… loading[/dim]"
    else:
        badge = "[dim]? unknown[/dim]"
    if channel.stale:
        badge = f"{badge} [yellow](stale)[/yellow]"
    lines.append(badge)
    if channel.game:
        lines.append(escape(channel.game))
    if channel.last_raided is not None:
        reference = now or datetime.now(tz=timezone.utc)
        last = channel.last_raided
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        lines.append(f"[dim]Raided {_format_timedelta(reference - last)} ago[/dim]")
    return "\n".join(lines)


class DashboardChanged(Message):
    """Something feeding the dashboard changed; recompute and render."""

    def __init__(self, reason: str) -> None:
        super().__init__()
        self.reason = reason


class RaidTile(Vertical):
    """One raid target on the dashboard."""

    class RaidRequested(Message):
        def __init__(self, channel: str) -> None:
            super().__init__()
            self.channel = channel

    class RemoveRequested(Message):
        def __init__(self, channel: str) -> None:
            super().__init__()
            self.channel = channel

    def __init__(self, channel: VisibleChannel, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.channel = channel
        if channel.is_live:
            self.add_class("-live")
        if channel.stale:
            self.add_class("-stale")

    def compose(self) -> ComposeResult:
        yield Static(describe_channel(self.channel), classes="tile-summary")
        with Horizontal(classes="tile-actions"):
            yield Button(
                "Raid",
                classes="tile-raid",
                variant="success",
                disabled=not self.channel.is_live,
            )
            yield Button("Remove", classes="tile-remove", variant="warning")

    @on(Button.Pressed, ".tile-raid")
    def _on_raid_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self.post_message(self.RaidRequested(self.channel.name))

    @on(Button.Pressed, ".tile-remove")
    def _on_remove_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self.post_message(self.RemoveRequested(self.channel.name))


class AddChannelTile(Button):
    """Trailing grid cell opening the add-channel dialog."""

    def __init__(self) -> None:
        super().__init__("+", classes="add-channel-tile")


class DashboardGrid(Grid):
    """Three-column grid of raid tiles."""

    async def rebuild(self, layout: GridLayout) -> None:
        """Replace every tile with the cells of *layout*.

        Old tiles are removed, together with their message handlers, before
        the new ones are mounted.
        """

        await self.remove_children()
        widgets: list[Any] = [
            AddChannelTile() if cell.is_add_cell else RaidTile(cell.channel)
            for cell in layout.cells
        ]
        await self.mount_all(widgets)

    async def show_message(self, message: str) -> None:
        await self.remove_children()
        await self.mount(Static(message, classes="dashboard-message"))


class StatusBar(Static):
    """A simple status bar widget."""

    status: reactive[str] = reactive("Ready")

    def watch_status(self, status: str) -> None:
        self.update(status)


class AddChannelScreen(ModalScreen[Optional[str]]):
    """Dialog asking for a channel name."""

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def compose(self) -> ComposeResult:
        with Vertical(id="add-channel-dialog"):
            yield Label("Channel name")
            yield Input(placeholder="e.g. some_streamer", id="add-channel-name")
            yield Label("", id="add-channel-error")
            with Horizontal(id="add-channel-buttons"):
                yield Button("Cancel", id="add-channel-cancel", variant="warning")
                yield Button("Add", id="add-channel-confirm", variant="success")

    def on_mount(self) -> None:  # pragma: no cover - UI callback
        self.query_one("#add-channel-name", Input).focus()

    def _submit(self) -> None:
        name = self.query_one("#add-channel-name", Input).value.strip()
        if not name:
            self.query_one("#add-channel-error", Label).update("Enter a channel name")
            return
        self.dismiss(name)

    @on(Input.Submitted, "#add-channel-name")
    def _on_name_submitted(self, _: Input.Submitted) -> None:
        self._submit()

    @on(Button.Pressed, "#add-channel-confirm")
    def _on_confirm(self, _: Button.Pressed) -> None:
        self._submit()

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#add-channel-cancel")
    def _on_cancel(self, _: Button.Pressed) -> None:
        self.action_cancel()


DEFAULT_CSS = """
#main-tabs {
    height: 1fr;
}

TabPane {
    padding: 0;
}

#dashboard-pane,
#logs-pane {
    layout: vertical;
    height: 1fr;
    padding: 0 1;
}

#dashboard-controls {
    height: auto;
}

#search {
    width: 1fr;
}

#dashboard-scroll {
    height: 1fr;
}

DashboardGrid {
    grid-size: 3;
    grid-gutter: 1 2;
    grid-rows: 9;
    height: auto;
}

RaidTile {
    border: round $panel;
    padding: 0 1;
    height: 9;
}

RaidTile.-live {
    border: round $success;
}

RaidTile.-stale {
    border: round $warning;
}

.tile-summary {
    height: 1fr;
}

.tile-actions {
    height: 3;
}

.tile-actions Button {
    width: 1fr;
    min-width: 8;
}

.add-channel-tile {
    width: 1fr;
    height: 9;
    text-style: bold;
}

.dashboard-message {
    column-span: 3;
    padding: 1;
    color: $text-muted;
}

AddChannelScreen {
    align: center middle;
}

#add-channel-dialog {
    width: 50;
    height: auto;
    border: heavy $primary;
    background: $surface;
    padding: 1 2;
}

#add-channel-error {
    color: $error;
}

#add-channel-buttons {
    height: auto;
    align-horizontal: right;
}

#log-viewer {
    padding: 0 1;
}

StatusBar {
    padding: 0 1;
}
"""


class RaidDeckApp(App[None]):
    """Main Textual application."""

    CSS = DEFAULT_CSS
    TITLE = "RaidDeck"
    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("q", "quit", "Quit"),
        Binding("f1", "switch_tab('dashboard')", "Raid targets"),
        Binding("f2", "switch_tab('logs')", "Logs"),
        Binding("/", "focus_search", "Filter"),
        Binding("escape", "clear_search", "Clear filter"),
        Binding("a", "add_channel", "Add channel"),
        Binding("o", "toggle_online_only", "Online only"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        config: AppConfig,
        engine: SyncEngine,
        *,
        theme: Optional[str] = None,
    ) -> None:
        super().__init__()
        for custom_theme in CUSTOM_THEMES.values():
            self.register_theme(custom_theme)
        self._apply_requested_theme(theme or config.theme)
        self._config = config
        self._engine = engine
        self._database = engine.database
        self._text_filter = ""
        self._render_lock = asyncio.Lock()
        self._rendered: Optional[list[tuple[VisibleChannel, str]]] = None
        self._remove_listener: Optional[Callable[[], None]] = None
        self._grid: Optional[DashboardGrid] = None
        self._online_checkbox: Optional[Checkbox] = None
        self._status_bar: Optional[StatusBar] = None
        log.info(
            "RaidDeckApp initialized with %d channel(s); database=%s",
            len(self._database),
            self._database.path,
        )

    def _apply_requested_theme(self, requested: Optional[str]) -> None:
        preferred = requested or DEFAULT_THEME_NAME
        if self.get_theme(preferred) is None:
            if requested:
                log.warning(
                    "Requested theme '%s' is unavailable; falling back to %s",
                    requested,
                    DEFAULT_THEME_NAME,
                )
            preferred = DEFAULT_THEME_NAME
        self.theme = preferred

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def text_filter(self) -> str:
        return self._text_filter

    def compose(self) -> ComposeResult:
        yield Header()
        with TabbedContent(id="main-tabs"):
            with TabPane("Raid targets", id="dashboard-tab"):
                with Vertical(id="dashboard-pane"):
                    with Horizontal(id="dashboard-controls"):
                        yield Input(placeholder="Filter channels…", id="search")
                        yield Checkbox(
                            "Online only",
                            value=self._database.only_online,
                            id="online-only",
                        )
                        yield Button("Refresh", id="refresh", variant="primary")
                    with VerticalScroll(id="dashboard-scroll"):
                        yield DashboardGrid(id="dashboard")
            with TabPane("Logs", id="logs-tab"):
                with VerticalScroll(id="logs-pane"):
                    yield LogViewer(id="log-viewer")
        yield StatusBar(id="status")
        yield Footer()

    async def on_mount(self) -> None:
        log.debug("Application mounted")
        # Kept so updates still land while a modal screen is on top.
        self._grid = self.query_one(DashboardGrid)
        self._online_checkbox = self.query_one("#online-only", Checkbox)
        self._status_bar = self.query_one(StatusBar)
        self._remove_listener = self._engine.add_listener(self._on_engine_changed)
        await self._engine.start()
        self._set_status("Loading channels…")
        self.post_message(DashboardChanged("mounted"))

    async def on_unmount(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        await self._engine.stop()
        self._engine.close()
        close = getattr(self._engine.service, "close", None)
        if close is not None:
            await close()

    # -- reconciliation ------------------------------------------------

    def _on_engine_changed(self, change: ChannelsChanged) -> None:
        self.post_message(DashboardChanged(change.reason))

    def visible_channels(self) -> list[VisibleChannel]:
        return filter_and_sort(
            self._database.channels,
            self._engine.snapshot(),
            text_filter=self._text_filter,
            only_online=self._database.only_online,
            last_raided=self._database.last_raided(),
        )

    @on(DashboardChanged)
    def _on_dashboard_changed(self, event: DashboardChanged) -> None:
        log.debug("Dashboard change: %s", event.reason)
        self._sync_online_checkbox()
        self.run_worker(self._render_dashboard(), group="dashboard")

    async def _render_dashboard(self) -> None:
        async with self._render_lock:
            grid = self._grid
            if grid is None:
                return
            if self._engine.initializing:
                if self._rendered is not None or not grid.children:
                    await grid.show_message("Loading channels…")
                    self._rendered = None
                return
            visible = self.visible_channels()
            # Tile text is part of the key so "raided N ago" advances on refresh ticks.
            now = datetime.now(tz=timezone.utc)
            rendered = [(channel, describe_channel(channel, now=now)) for channel in visible]
            if rendered == self._rendered:
                return
            await grid.rebuild(layout_grid(visible))
            self._rendered = rendered
            live = sum(1 for channel in visible if channel.is_live)
            self.sub_title = (
                f"Showing {len(visible)} of {len(self._database)} channel(s), {live} live"
            )

    def _sync_online_checkbox(self) -> None:
        checkbox = self._online_checkbox
        if checkbox is not None and checkbox.value != self._database.only_online:
            checkbox.value = self._database.only_online

    def _set_status(self, message: str) -> None:
        if self._status_bar is None:
            log.debug("Status bar unavailable: %s", message)
            return
        self._status_bar.status = message

    # -- commands ------------------------------------------------------

    def add_channel(self, name: str) -> bool:
        cleaned = name.strip()
        if not cleaned:
            self._set_status("Channel name cannot be empty")
            return False
        if not self._database.add_channel(cleaned):
            self._set_status(f"{cleaned} is already on the list")
            return False
        self._set_status(f"Added {cleaned}; loading…")
        return True

    def remove_channel(self, name: str) -> bool:
        if not self._database.remove_channel(name):
            return False
        self._set_status(f"Removed {name}")
        return True

    def set_text_filter(self, value: str) -> None:
        if value == self._text_filter:
            return
        self._text_filter = value
        self.post_message(DashboardChanged("filter"))

    def raid_channel(self, name: str) -> None:
        self._database.set_raided(name, datetime.now(tz=timezone.utc))
        start_raid = getattr(self._engine.service, "start_raid", None)
        if start_raid is None:
            self._set_status(f"Recorded raid to {name}")
            return
        self._set_status(f"Starting raid to {name}…")
        self.run_worker(
            self._start_raid(start_raid, name), group="raid", exit_on_error=False
        )

    async def _start_raid(self, start_raid: Callable[[str], Any], name: str) -> None:
        try:
            await start_raid(name)
        except RemoteError as exc:
            log.error("Raid to %s failed: %s", name, exc)
            self._set_status(f"Raid to {name} failed: {exc}")
        except Exception as exc:
            log.exception("Unexpected error while raiding %s", name)
            self._set_status(f"Raid to {name} failed: {exc or type(exc).__name__}")
        else:
            self._set_status(f"Raiding {name}")

    def action_add_channel(self) -> None:
        self.push_screen(AddChannelScreen(), callback=self._handle_add_channel_result)

    def _handle_add_channel_result(self, result: Optional[str]) -> None:
        if result:
            self.add_channel(result)

    def action_toggle_online_only(self) -> None:
        self._database.only_online = not self._database.only_online

    def action_refresh(self) -> None:
        self._engine.request_refresh()
        self._set_status("Refreshing…")

    def action_switch_tab(self, tab: str) -> None:
        if isinstance(self.screen, ModalScreen):
            return
        self.query_one("#main-tabs", TabbedContent).active = f"{tab}-tab"

    def action_focus_search(self) -> None:
        if isinstance(self.screen, ModalScreen):
            return
        self.action_switch_tab("dashboard")
        self.query_one("#search", Input).focus()

    def action_clear_search(self) -> None:
        if isinstance(self.screen, ModalScreen):
            return
        search = self.query_one("#search", Input)
        if search.value:
            search.value = ""
        self.set_text_filter("")

    @on(Input.Changed, "#search")
    def _on_search_changed(self, event: Input.Changed) -> None:
        self.set_text_filter(event.value)

    @on(Checkbox.Changed, "#online-only")
    def _on_online_only_changed(self, event: Checkbox.Changed) -> None:
        self._database.only_online = event.value

    @on(Button.Pressed, "#refresh")
    def _on_refresh_pressed(self, _: Button.Pressed) -> None:
        self.action_refresh()

    @on(Button.Pressed, ".add-channel-tile")
    def _on_add_tile_pressed(self, _: Button.Pressed) -> None:
        self.action_add_channel()

    def on_raid_tile_raid_requested(self, event: RaidTile.RaidRequested) -> None:
        self.raid_channel(event.channel)

    def on_raid_tile_remove_requested(self, event: RaidTile.RemoveRequested) -> None:
        self.remove_channel(event.channel)


__all__ = ["RaidDeckApp", "describe_channel"]
