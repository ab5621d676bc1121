"""Theme definitions bundled with RaidDeck."""
from __future__ import annotations

from typing import Mapping

from textual.theme import Theme

__all__ = [
    "CUSTOM_THEMES",
    "DEFAULT_THEME_NAME",
]

_PURPLE = "#9146ff"
_PURPLE_DEEP = "#772ce8"
_PURPLE_PALE = "#bf94ff"
_LIVE_RED = "#eb0400"
_AMBER = "#ffb31a"
_MINT = "#00f593"
_INK = "#0e0e10"
_CHARCOAL = "#18181b"
_SLATE = "#26262c"
_FOG = "#efeff1"
_PAPER = "#f7f7f8"
_STONE = "#53535f"

_RAIDDECK_DARK = Theme(
    "raiddeck-dark",
    primary=_PURPLE,
    secondary=_PURPLE_PALE,
    warning=_AMBER,
    error=_LIVE_RED,
    success=_MINT,
    accent=_PURPLE_PALE,
    foreground=_FOG,
    background=_INK,
    surface=_CHARCOAL,
    panel=_SLATE,
    dark=True,
)

_RAIDDECK_LIGHT = Theme(
    "raiddeck-light",
    primary=_PURPLE_DEEP,
    secondary=_PURPLE,
    warning=_AMBER,
    error=_LIVE_RED,
    success="#00a36c",
    accent=_PURPLE_DEEP,
    foreground=_CHARCOAL,
    background=_PAPER,
    surface=_FOG,
    panel=_FOG,
    boost=_STONE,
    dark=False,
)

CUSTOM_THEMES: Mapping[str, Theme] = {
    _RAIDDECK_DARK.name: _RAIDDECK_DARK,
    _RAIDDECK_LIGHT.name: _RAIDDECK_LIGHT,
}
"""Themes bundled with the application keyed by their names."""

DEFAULT_THEME_NAME = _RAIDDECK_DARK.name
"""Theme applied when none is requested."""
