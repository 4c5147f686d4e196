"""LINE WORKS utilities: API, bot, event formatting."""

from __future__ import annotations

from .core import LineWorksAPI, LineWorksBot
from .formatting import EventCard, format_event, render_flex, render_text

__all__ = [
    "EventCard",
    "LineWorksAPI",
    "LineWorksBot",
    "format_event",
    "render_flex",
    "render_text",
]
