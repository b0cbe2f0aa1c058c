from __future__ import annotations

"""Presence/connection indicators for the TUI."""

ONLINE = "online"
OFFLINE = "offline"


def status_icon(is_online: bool) -> str:
    """Return a unicode icon for presence: filled dot for online, hollow for offline."""
    return "●" if is_online else "○"


def connection_label(is_connected: bool) -> str:
    return ONLINE if is_connected else OFFLINE


__all__ = ["ONLINE", "OFFLINE", "status_icon", "connection_label"]
