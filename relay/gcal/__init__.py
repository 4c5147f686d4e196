"""Google Calendar side: provider client, callback validator, watch-channel lifecycle."""

from __future__ import annotations

from .client import GoogleCalendarClient
from .validator import validate_callback
from .watch import WatchChannelManager

__all__ = ["GoogleCalendarClient", "WatchChannelManager", "validate_callback"]
