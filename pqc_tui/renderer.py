from __future__ import annotations

"""
Renderer side of the bus: turns store snapshots into structured text.

A `Surface` is whatever can show text in named widgets (the curses screen in
`bin/client.py`, a recorder in tests). `RendererBridge` subscribes to the
refresh topics and rebuilds one widget per notification from fresh store
snapshots; it never keeps references into the store between refreshes.
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .event_bus import EventBus, Topic
from .protocol import DEFAULT_COLOR
from .slash_commands import suggest as slash_suggest
from .state import Message, StateStore
from .status import connection_label, status_icon

SUBSCRIBER_ID = "renderer"

MESSAGE_AREA = "messageArea"
USERS_AREA = "usersArea"
ROOMS_AREA = "roomsArea"
INPUT_BAR = "inputBar"
STATUS = "status"
CURRENT_USER = "currentUser"

TIMESTAMP_COLOR = "#8b949e"
MUTED_COLOR = "#8b949e"
INPUT_COLOR = "#58a6ff"
CURSOR_GLYPH = "▊"


@dataclass(frozen=True)
class Span:
    text: str
    color: str = DEFAULT_COLOR
    bold: bool = False


Line = List[Span]


class Surface:
    """Display capability consumed by the renderer."""

    def display_text(self, widget_id: str, lines: Sequence[Line]) -> None:
        raise NotImplementedError

    def clear(self, widget_id: str) -> None:
        raise NotImplementedError


def format_time(ts: float) -> str:
    return time.strftime("%H:%M", time.localtime(ts))


def message_line(msg: Message) -> Line:
    line = [Span(f"{format_time(msg.timestamp)} ", TIMESTAMP_COLOR)]
    if msg.is_sent:
        line.append(Span("You: ", msg.color, bold=True))
    line.append(Span(msg.text, msg.color))
    return line


def message_lines(store: StateStore) -> List[Line]:
    return [message_line(m) for m in store.messages()]


def user_lines(store: StateStore) -> List[Line]:
    users = store.users()
    if not users:
        return [[Span("No users connected", MUTED_COLOR)]]
    out: List[Line] = []
    for user in users:
        out.append([Span(f"{status_icon(True)} ", user.color), Span(user.username or str(user.key), user.color)])
    return out


def room_lines(store: StateStore) -> List[Line]:
    rooms = store.rooms()
    if not rooms:
        return [[Span("No available rooms", MUTED_COLOR)]]
    current = store.current_room()
    out: List[Line] = []
    for room in rooms:
        selected = current is not None and current.id == room.id
        marker = "> " if selected else "  "
        out.append([Span(marker + (room.name or room.id), INPUT_COLOR if selected else DEFAULT_COLOR, bold=selected)])
    return out


def input_line(store: StateStore) -> Line:
    text, caret = store.input.text, store.input.caret
    before, after = text[:caret], text[caret:]
    return [Span(f"> {before}{CURSOR_GLYPH}{after}", INPUT_COLOR)]


def status_line(store: StateStore) -> Line:
    text = store.input.text
    hints = slash_suggest(text.strip(), limit=3) if text.startswith("/") else []
    if hints:
        msg = "Commands: " + ", ".join(f"{c.name} ({c.description})" for c in hints)
    elif text:
        msg = f"Type: {len(text)} chars | Press Enter to send, ESC to exit"
    else:
        msg = "Ready - Type a message and press Enter to send, ESC to exit"
    return [Span(msg, MUTED_COLOR)]


def current_user_line(store: StateStore) -> Optional[Line]:
    conn = store.connection()
    user = conn.current_user
    if user is None:
        return None
    return [
        Span(f"{status_icon(conn.is_connected)} ", user.color),
        Span(user.username or str(user.key), user.color, bold=True),
        Span(f" ({connection_label(conn.is_connected)})", MUTED_COLOR),
    ]


class RendererBridge:
    def __init__(self, store: StateStore, bus: EventBus, surface: Surface) -> None:
        self.store = store
        self.bus = bus
        self.surface = surface
        self._routes = {
            Topic.UPDATE_MESSAGE_AREA: self.refresh_messages,
            Topic.UPDATE_USERS_PANEL: self.refresh_users,
            Topic.UPDATE_ROOMS_PANEL: self.refresh_rooms,
            Topic.UPDATE_INPUT_BAR: self.refresh_input,
            Topic.UPDATE_CURRENT_USER_TEXT: self.refresh_current_user,
        }
        for topic, fn in self._routes.items():
            bus.subscribe(topic, SUBSCRIBER_ID, lambda _value=None, fn=fn: fn())

    def close(self) -> None:
        for topic in self._routes:
            self.bus.unsubscribe(SUBSCRIBER_ID, topic)

    def refresh_all(self) -> None:
        for fn in self._routes.values():
            fn()

    def refresh_messages(self) -> None:
        self.surface.display_text(MESSAGE_AREA, message_lines(self.store))

    def refresh_users(self) -> None:
        self.surface.display_text(USERS_AREA, user_lines(self.store))

    def refresh_rooms(self) -> None:
        self.surface.display_text(ROOMS_AREA, room_lines(self.store))

    def refresh_input(self) -> None:
        self.surface.display_text(INPUT_BAR, [input_line(self.store)])
        self.surface.display_text(STATUS, [status_line(self.store)])

    def refresh_current_user(self) -> None:
        line = current_user_line(self.store)
        if line is None:
            self.surface.clear(CURRENT_USER)
        else:
            self.surface.display_text(CURRENT_USER, [line])


__all__ = [
    "Span",
    "Line",
    "Surface",
    "RendererBridge",
    "MESSAGE_AREA",
    "USERS_AREA",
    "ROOMS_AREA",
    "INPUT_BAR",
    "STATUS",
    "CURRENT_USER",
    "format_time",
    "message_lines",
    "user_lines",
    "room_lines",
    "input_line",
    "status_line",
    "current_user_line",
]
