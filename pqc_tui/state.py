from __future__ import annotations

"""
Client state store: connection, identity, message log, roster and rooms.

The store is the single owner of these collections. Readers get snapshots
(tuples/copies); only the store's methods mutate. The input buffer is held
here too but is edited exclusively by the input controller.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .event_bus import EventBus, Topic
from .protocol import DEFAULT_COLOR, Identity, Room, identities_match
from .text_editor import TextEditor

MAX_MESSAGES = 50

InputBuffer = TextEditor


@dataclass(frozen=True)
class Message:
    text: str
    is_sent: bool
    timestamp: float
    color: str = DEFAULT_COLOR


@dataclass(frozen=True)
class ConnectionState:
    is_connected: bool = False
    current_user: Optional[Identity] = None


class StateStore:
    def __init__(self, max_messages: int = MAX_MESSAGES, clock: Callable[[], float] = time.time) -> None:
        self.max_messages = max(1, int(max_messages))
        self._clock = clock
        self.input: InputBuffer = InputBuffer()
        self._messages: List[Message] = []
        self._users: Dict[Union[str, Tuple[str, str]], Identity] = {}
        self._rooms: Dict[str, Room] = {}
        self._current_room_id: Optional[str] = None
        self._connection = ConnectionState()
        self._last_ts = 0.0

    # ---- connection / identity ----
    def connection(self) -> ConnectionState:
        return self._connection

    @property
    def current_user(self) -> Optional[Identity]:
        return self._connection.current_user

    def set_connected(self, identity: Optional[Identity]) -> None:
        self._connection = ConnectionState(is_connected=True, current_user=identity)
        self._evict_self()

    def set_disconnected(self, identity: Optional[Identity]) -> None:
        """Full clear, then record the identity the backend reported."""
        self.clear()
        self._connection = ConnectionState(is_connected=False, current_user=identity)

    def _is_self(self, identity: Identity) -> bool:
        return identities_match(identity, self._connection.current_user)

    def _evict_self(self) -> None:
        for key in [k for k, u in self._users.items() if self._is_self(u)]:
            del self._users[key]

    # ---- message log ----
    def add_message(self, text: str, is_sent: bool, color: Optional[str] = None) -> Message:
        ts = max(self._last_ts, float(self._clock()))
        self._last_ts = ts
        msg = Message(text=text, is_sent=bool(is_sent), timestamp=ts, color=color or DEFAULT_COLOR)
        self._messages.append(msg)
        if len(self._messages) > self.max_messages:
            del self._messages[: len(self._messages) - self.max_messages]
        return msg

    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    # ---- roster ----
    def add_user(self, identity: Identity) -> bool:
        """Upsert by identity key; the local identity is never stored."""
        if self._is_self(identity):
            return False
        self._users[identity.key] = identity
        return True

    def remove_user(self, identity: Identity) -> bool:
        if self._is_self(identity):
            return False
        keys = [k for k, u in self._users.items() if k == identity.key or identities_match(u, identity)]
        for key in keys:
            del self._users[key]
        return bool(keys)

    def replace_users(self, identities: Iterable[Identity]) -> int:
        """Authoritative resync: the roster becomes exactly `identities` minus self."""
        self._users = {}
        for identity in identities:
            self.add_user(identity)
        return len(self._users)

    def users(self) -> Tuple[Identity, ...]:
        return tuple(self._users.values())

    # ---- rooms ----
    def upsert_room(self, room: Room) -> None:
        self._rooms[room.id] = room

    def remove_room(self, room_id: str) -> bool:
        removed = self._rooms.pop(room_id, None) is not None
        if self._current_room_id == room_id:
            self._current_room_id = None
        return removed

    def replace_rooms(self, rooms: Iterable[Room]) -> int:
        self._rooms = {room.id: room for room in rooms}
        if self._current_room_id not in self._rooms:
            self._current_room_id = None
        return len(self._rooms)

    def set_current_room(self, room_id: Optional[str]) -> None:
        if room_id is not None and room_id not in self._rooms:
            raise KeyError(room_id)
        self._current_room_id = room_id

    def current_room(self) -> Optional[Room]:
        if self._current_room_id is None:
            return None
        return self._rooms.get(self._current_room_id)

    def rooms(self) -> Tuple[Room, ...]:
        return tuple(self._rooms.values())

    # ---- teardown ----
    def clear(self) -> None:
        self._messages = []
        self.input.reset()
        self._users = {}
        self._rooms = {}
        self._current_room_id = None
        self._connection = ConnectionState()


def post_message(store: StateStore, bus: EventBus, text: str, *, is_sent: bool = False, color: Optional[str] = None) -> Message:
    """Append to the log and announce it: `add_message` carries the entry."""
    msg = store.add_message(text, is_sent, color)
    bus.notify(Topic.ADD_MESSAGE, msg)
    bus.notify(Topic.UPDATE_MESSAGE_AREA)
    return msg


__all__ = [
    "MAX_MESSAGES",
    "InputBuffer",
    "Message",
    "ConnectionState",
    "StateStore",
    "post_message",
]
