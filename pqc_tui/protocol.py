from __future__ import annotations

"""
Line-delimited JSON protocol spoken with the backend process.

Keep every "type" string in the `T` namespace. Outbound frames are
`{"type", "value"}`; inbound frames are `{"type", "value", "metadata"?}`
where some values carry a second JSON document (user and room lists,
single rooms). The helpers here are pure: they raise `FrameError` and leave
logging to the caller at the parse boundary.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .error_codes import FrameError


DEFAULT_COLOR = "#7ee787"


class T:
    # TUI to backend
    CONNECT = "connect"
    SEND = "send"

    # Connection lifecycle
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    KEYS_EXCHANGED = "keys_exchanged"

    # Chat
    MESSAGE = "message"
    ERROR = "error"
    SUCCESS = "success"

    # Roster
    USER_ENTERED_CHAT = "user_entered_chat"
    USER_LEFT_CHAT = "user_left_chat"
    CURRENT_USERS = "current_users"

    # Rooms
    JOINED_ROOM = "joined_room"
    LEFT_ROOM = "left_room"
    CREATED_ROOM = "created_room"
    DELETED_ROOM = "deleted_room"
    CURRENT_ROOMS = "current_rooms"
    AVAILABLE_ROOMS = "available_rooms"  # older backends


OUTBOUND_TYPES = frozenset({T.CONNECT, T.SEND})


@dataclass(frozen=True)
class LegacyIdentity:
    """v1 identity: the (username, color) pair is the key."""

    username: str
    color: str = DEFAULT_COLOR

    version = 1

    @property
    def key(self) -> Tuple[str, str]:
        return (self.username, self.color)

    @property
    def user_id(self) -> Optional[str]:
        return None

    def matches(self, other: Optional["Identity"]) -> bool:
        return identities_match(self, other)


@dataclass(frozen=True)
class UserIdentity:
    """v2 identity: an opaque backend-assigned userId is the key."""

    user_id: str
    username: str = ""
    color: str = DEFAULT_COLOR
    current_room_id: str = ""

    version = 2

    @property
    def key(self) -> str:
        return self.user_id

    def matches(self, other: Optional["Identity"]) -> bool:
        return identities_match(self, other)


Identity = Union[LegacyIdentity, UserIdentity]
# Connected users carry exactly the identity record the backend sent.
ConnectedUser = Identity


def identities_match(a: Optional[Identity], b: Optional[Identity]) -> bool:
    if a is None or b is None:
        return False
    if a.user_id and b.user_id:
        return a.user_id == b.user_id
    return (a.username, a.color) == (b.username, b.color)


@dataclass(frozen=True)
class Room:
    id: str
    name: str = ""
    created_by: str = ""


@dataclass(frozen=True)
class Frame:
    type: str
    value: str = ""
    metadata: Optional[Dict[str, Any]] = field(default=None, compare=False)

    @property
    def color(self) -> str:
        meta = self.metadata or {}
        color = meta.get("color")
        if isinstance(color, str) and color:
            return color
        return DEFAULT_COLOR


def encode_command(command_type: str, value: str) -> bytes:
    """Serialize an outbound command to one newline-terminated JSON line."""
    if command_type not in OUTBOUND_TYPES:
        raise ValueError(f"unsupported command type: {command_type!r}")
    payload = {"type": command_type, "value": value or ""}
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


def decode_frame(line: Union[str, bytes]) -> Frame:
    """Parse one protocol line into a `Frame`.

    Raises FrameError('E101') when the text is not JSON and FrameError('E102')
    when the JSON does not have the `{type: str, value: str, metadata?: object}`
    shape.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", "replace")
    try:
        obj = json.loads(line)
    except (RecursionError, ValueError) as exc:
        raise FrameError("E101", "Frame.decode", str(exc)) from exc
    if not isinstance(obj, dict):
        raise FrameError("E102", "Frame.decode", f"expected object, got {type(obj).__name__}")
    ftype = obj.get("type")
    if not isinstance(ftype, str) or not ftype:
        raise FrameError("E102", "Frame.decode", "missing or non-string 'type'")
    value = obj.get("value", "")
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise FrameError("E102", "Frame.decode", f"non-string 'value' for {ftype}")
    metadata = obj.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise FrameError("E102", "Frame.decode", f"non-object 'metadata' for {ftype}")
    return Frame(type=ftype, value=value, metadata=metadata)


def decode_nested(value: str, stage: str) -> Any:
    """Second decode pass for values that are themselves JSON documents."""
    try:
        return json.loads(value)
    except (RecursionError, TypeError, ValueError) as exc:
        raise FrameError("E103", stage, str(exc)) from exc


def parse_identity(obj: Any) -> Identity:
    """Map a metadata/user object onto the newest identity schema it satisfies."""
    if not isinstance(obj, dict):
        raise FrameError("E104", "Identity.parse", f"expected object, got {type(obj).__name__}")
    color = obj.get("color")
    if not isinstance(color, str) or not color:
        color = DEFAULT_COLOR
    username = obj.get("username")
    if username is not None and not isinstance(username, str):
        raise FrameError("E104", "Identity.parse", "non-string 'username'")
    user_id = obj.get("userId")
    if isinstance(user_id, str) and user_id:
        room_id = obj.get("currentRoomId")
        return UserIdentity(
            user_id=user_id,
            username=username or "",
            color=color,
            current_room_id=room_id if isinstance(room_id, str) else "",
        )
    if username:
        return LegacyIdentity(username=username, color=color)
    raise FrameError("E104", "Identity.parse", "neither 'userId' nor 'username' present")


def parse_room(obj: Any) -> Room:
    """Accept both the Go-style `{ID, Name, CreatedBy}` and lowercase room shapes."""
    if not isinstance(obj, dict):
        raise FrameError("E104", "Room.parse", f"expected object, got {type(obj).__name__}")
    if "ID" in obj:
        rid, name, created_by = obj.get("ID"), obj.get("Name"), obj.get("CreatedBy")
    else:
        rid, name, created_by = obj.get("id"), obj.get("name"), obj.get("created_by")
    if not isinstance(rid, str) or not rid:
        raise FrameError("E104", "Room.parse", "missing room id")
    return Room(
        id=rid,
        name=name if isinstance(name, str) else "",
        created_by=created_by if isinstance(created_by, str) else "",
    )


def _nested_list(value: str, stage: str) -> List[Any]:
    if not (value or "").strip():
        return []
    items = decode_nested(value, stage)
    if items is None:
        return []
    if not isinstance(items, list):
        raise FrameError("E103", stage, f"expected array, got {type(items).__name__}")
    return items


def parse_user_list(value: str) -> Tuple[List[Identity], List[FrameError]]:
    """Decode the `current_users` value.

    A broken document raises FrameError; individual bad records are returned
    as errors next to the users that did parse.
    """
    users: List[Identity] = []
    errors: List[FrameError] = []
    for item in _nested_list(value, "Nested.current_users"):
        try:
            users.append(parse_identity(item))
        except FrameError as exc:
            errors.append(exc)
    return users, errors


def parse_room_list(value: str) -> Tuple[List[Room], List[FrameError]]:
    rooms: List[Room] = []
    errors: List[FrameError] = []
    for item in _nested_list(value, "Nested.current_rooms"):
        try:
            rooms.append(parse_room(item))
        except FrameError as exc:
            errors.append(exc)
    return rooms, errors


def parse_room_value(value: str) -> Room:
    return parse_room(decode_nested(value, "Nested.room"))


__all__ = [
    "DEFAULT_COLOR",
    "T",
    "OUTBOUND_TYPES",
    "LegacyIdentity",
    "UserIdentity",
    "Identity",
    "ConnectedUser",
    "identities_match",
    "Room",
    "Frame",
    "encode_command",
    "decode_frame",
    "decode_nested",
    "parse_identity",
    "parse_room",
    "parse_user_list",
    "parse_room_list",
    "parse_room_value",
]
