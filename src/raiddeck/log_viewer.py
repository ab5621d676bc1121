"""Textual widget displaying log output within the application."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterable, Optional, Tuple

from rich.text import Text
from textual.widgets import Static

from .logging_utils import register_log_viewer

_LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.WARNING: "yellow",
    logging.ERROR: "bold red",
    logging.CRITICAL: "bold white on red",
}


class LogViewer(Static):
    """Rolling log output, coloured by record level."""

    def __init__(
        self,
        *,
        max_lines: int = 500,
        id: Optional[str] = None,
    ) -> None:
        super().__init__("", id=id, markup=False)
        self._entries: Deque[tuple[int, str]] = deque(maxlen=max_lines)
        self._refresh_view()

    def on_mount(self) -> None:  # pragma: no cover - requires UI integration
        register_log_viewer(self)

    def on_unmount(self) -> None:  # pragma: no cover - shutdown path
        register_log_viewer(None)

    @property
    def lines(self) -> Tuple[str, ...]:
        """Return the currently buffered log lines."""

        return tuple(message for _, message in self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._refresh_view()

    def append_entry(self, level: int, message: str) -> None:
        self._entries.append((level, message))
        self._refresh_view()

    def replace_entries(self, entries: Iterable[tuple[int, str]]) -> None:
        self._entries.clear()
        self._entries.extend(entries)
        self._refresh_view()

    def _render_entries(self) -> Text:
        if not self._entries:
            return Text("No log messages yet.", style="dim")
        text = Text()
        for index, (level, message) in enumerate(self._entries):
            if index:
                text.append("\n")
            text.append(message, style=_LEVEL_STYLES.get(level, ""))
        return text

    def _refresh_view(self) -> None:
        self.update(self._render_entries())
        if self.is_attached:
            self.call_after_refresh(self._scroll_to_end)

    def _scroll_to_end(self) -> None:
        parent = self.parent
        scroll_end = getattr(parent, "scroll_end", None)
        if callable(scroll_end):
            scroll_end(animate=False)


__all__ = ["LogViewer"]
