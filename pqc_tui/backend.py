from __future__ import annotations

"""
Bridge to the backend process over its standard streams.

Outbound: `send()` writes one JSON line to the child's stdin (no-op until the
process exists). Inbound: `on_data()` takes whatever bytes the stdout pipe
delivered, reassembles lines across deliveries, parses each line on its own
and dispatches it onto the state store and the event bus. A bad line is
logged and skipped; the rest of the chunk is still applied.
"""

import codecs
import logging
import os
import subprocess
from typing import Callable, Dict, IO, Optional, Sequence

from .error_codes import FrameError, format_error
from .event_bus import EventBus, Topic
from .protocol import (
    T,
    Frame,
    decode_frame,
    encode_command,
    parse_identity,
    parse_room_list,
    parse_room_value,
    parse_user_list,
)
from .state import StateStore, post_message

DEBUG_LOGGER = logging.getLogger('client.debug')
DEFAULT_MAX_FRAME_BYTES = 65536


class BackendBridge:
    def __init__(
        self,
        store: StateStore,
        bus: EventBus,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        self.store = store
        self.bus = bus
        self.max_frame_bytes = int(max_frame_bytes or 0)
        self.process: Optional[subprocess.Popen] = None
        self.stdin: Optional[IO[bytes]] = None
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._pending = ""
        self._discarding = False
        self._exit_notified = False
        self.sent_count = 0
        self.recv_count = 0
        self.parse_failures = 0
        self._handlers: Dict[str, Callable[[Frame], None]] = {
            T.CONNECTED: self._on_connected,
            T.DISCONNECTED: self._on_disconnected,
            T.RECONNECTING: self._on_reconnecting,
            T.KEYS_EXCHANGED: self._on_keys_exchanged,
            T.MESSAGE: self._on_message,
            T.ERROR: self._on_status,
            T.SUCCESS: self._on_status,
            T.USER_ENTERED_CHAT: self._on_user_entered,
            T.USER_LEFT_CHAT: self._on_user_left,
            T.CURRENT_USERS: self._on_current_users,
            T.JOINED_ROOM: self._on_joined_room,
            T.CREATED_ROOM: self._on_created_room,
            T.LEFT_ROOM: self._on_left_room,
            T.DELETED_ROOM: self._on_deleted_room,
            T.CURRENT_ROOMS: self._on_current_rooms,
            T.AVAILABLE_ROOMS: self._on_current_rooms,
        }

    # ---- process lifecycle ----
    def start(self, argv: Sequence[str], *, cwd: Optional[str] = None) -> subprocess.Popen:
        log = logging.getLogger('client.backend')
        log.info("Starting backend: %s", " ".join(argv))
        self.process = subprocess.Popen(
            list(argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
        )
        self.stdin = self.process.stdin
        self._exit_notified = False
        self.send(T.CONNECT, "")
        return self.process

    def attach(self, stdin: IO[bytes]) -> None:
        """Use an already open writable stream as the backend input."""
        self.stdin = stdin

    def stdout_fd(self) -> Optional[int]:
        stdout = getattr(self.process, 'stdout', None)
        if stdout is None:
            return None
        return stdout.fileno()

    def stderr_fd(self) -> Optional[int]:
        stderr = getattr(self.process, 'stderr', None)
        if stderr is None:
            return None
        return stderr.fileno()

    def read_available(self, size: int = 4096) -> bool:
        """Read one delivery from the child's stdout; False on EOF."""
        fd = self.stdout_fd()
        if fd is None:
            return False
        data = os.read(fd, size)
        if not data:
            self.flush()
            return False
        self.on_data(data)
        return True

    def read_stderr(self, size: int = 4096) -> bool:
        fd = self.stderr_fd()
        if fd is None:
            return False
        data = os.read(fd, size)
        if not data:
            return False
        log = logging.getLogger('client.backend')
        for line in data.decode('utf-8', 'replace').splitlines():
            if line.strip():
                log.info("[backend] %s", line)
        return True

    def poll_exit(self) -> Optional[int]:
        """Return the exit code once the child is gone, notifying `exit` once."""
        if self.process is None:
            return None
        code = self.process.poll()
        if code is not None:
            self.handle_exit(code)
        return code

    def handle_exit(self, code: Optional[int]) -> None:
        if self._exit_notified:
            return
        self._exit_notified = True
        # frames still buffered in the pipe belong before the exit
        while self.read_available():
            pass
        self.flush()
        self.stdin = None
        logging.getLogger('client.backend').warning("Backend exited with code %s", code)
        self.bus.notify(Topic.EXIT, {"code": code})

    def stop(self, timeout: float = 2.0) -> None:
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        log = logging.getLogger('client.backend')
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Backend did not terminate in %.1fs; killing", timeout)
            proc.kill()
            proc.wait()
        self.stdin = None

    # ---- outbound ----
    def send(self, command_type: str, value: str) -> bool:
        payload = encode_command(command_type, value)
        out = self.stdin
        if out is None or getattr(out, 'closed', False):
            return False
        try:
            out.write(payload)
            out.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            logging.getLogger('client.backend').error(format_error('E106', 'Backend.send', str(exc)))
            return False
        self.sent_count += 1
        DEBUG_LOGGER.debug("Outgoing[%s]: %s", self.sent_count, payload.rstrip(b"\n"))
        return True

    # ---- inbound ----
    def on_data(self, chunk: bytes) -> int:
        """Feed one stdout delivery; return how many frames were applied."""
        text = self._decoder.decode(chunk)
        if not text:
            return 0
        parts = (self._pending + text).split("\n")
        self._pending = parts.pop()
        applied = 0
        for line in parts:
            if self._discarding:
                # tail of an oversized line
                self._discarding = False
                continue
            if self._handle_line(line):
                applied += 1
        if self._discarding:
            # still inside an oversized line, already reported
            self._pending = ""
        elif self.max_frame_bytes and len(self._pending.encode('utf-8')) > self.max_frame_bytes:
            self._reject_oversized(len(self._pending))
            self._pending = ""
            self._discarding = True
        return applied

    def flush(self) -> int:
        """Parse whatever unterminated text is left at end of stream."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if self._discarding:
            self._discarding = False
            return 0
        return 1 if self._handle_line(tail) else 0

    def _reject_oversized(self, size: int) -> None:
        self.parse_failures += 1
        logging.getLogger('client.backend').error(
            format_error('E105', 'Frame.read', f"{size} chars > {self.max_frame_bytes} bytes")
        )

    def _handle_line(self, line: str) -> bool:
        line = line.strip()
        if not line:
            return False
        log = logging.getLogger('client.backend')
        if self.max_frame_bytes and len(line.encode('utf-8')) > self.max_frame_bytes:
            self._reject_oversized(len(line))
            return False
        try:
            frame = decode_frame(line)
        except FrameError as exc:
            self.parse_failures += 1
            log.error("%s; line=%r", exc, line[:200])
            return False
        self.recv_count += 1
        DEBUG_LOGGER.debug("Incoming[%s]: %s", self.recv_count, line)
        self.dispatch(frame)
        return True

    def dispatch(self, frame: Frame) -> None:
        handler = self._handlers.get(frame.type)
        if handler is None:
            logging.getLogger('client.backend').debug("Ignoring unknown frame type %r", frame.type)
            return
        handler(frame)

    # ---- handlers ----
    def _identity(self, frame: Frame):
        if not frame.metadata:
            return None
        try:
            return parse_identity(frame.metadata)
        except FrameError as exc:
            logging.getLogger('client.backend').error("%s (type=%s)", exc, frame.type)
            return None

    def _log(self, frame: Frame, text: str) -> None:
        post_message(self.store, self.bus, text, is_sent=False, color=frame.color)

    def _on_connected(self, frame: Frame) -> None:
        self.store.set_connected(self._identity(frame))
        self._log(frame, "Connected to server.")
        self.bus.notify(Topic.UPDATE_CURRENT_USER_TEXT)
        self.bus.notify(Topic.UPDATE_USERS_PANEL)

    def _on_disconnected(self, frame: Frame) -> None:
        self.store.set_disconnected(self._identity(frame))
        self._log(frame, "Disconnected from server.")
        self.bus.notify(Topic.UPDATE_CURRENT_USER_TEXT)
        self.bus.notify(Topic.UPDATE_USERS_PANEL)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)
        self.bus.notify(Topic.UPDATE_INPUT_BAR)

    def _on_reconnecting(self, frame: Frame) -> None:
        self._log(frame, "Reconnecting...")

    def _on_keys_exchanged(self, frame: Frame) -> None:
        self._log(frame, "Keys exchanged.")

    def _on_message(self, frame: Frame) -> None:
        self._log(frame, frame.value)

    def _on_status(self, frame: Frame) -> None:
        self._log(frame, frame.value)

    def _on_user_entered(self, frame: Frame) -> None:
        identity = self._identity(frame)
        if identity is not None:
            self.store.add_user(identity)
        self.bus.notify(Topic.UPDATE_USERS_PANEL)

    def _on_user_left(self, frame: Frame) -> None:
        identity = self._identity(frame)
        if identity is not None:
            self.store.remove_user(identity)
        self.bus.notify(Topic.UPDATE_USERS_PANEL)

    def _on_current_users(self, frame: Frame) -> None:
        log = logging.getLogger('client.backend')
        try:
            users, errors = parse_user_list(frame.value)
        except FrameError as exc:
            log.error("%s; value=%r", exc, frame.value[:200])
            users, errors = [], []
        for exc in errors:
            log.error("%s (current_users entry skipped)", exc)
        self.store.replace_users(users)
        self.bus.notify(Topic.UPDATE_USERS_PANEL)

    def _room(self, frame: Frame):
        try:
            return parse_room_value(frame.value)
        except FrameError as exc:
            logging.getLogger('client.backend').error("%s; type=%s value=%r", exc, frame.type, frame.value[:200])
            return None

    def _on_joined_room(self, frame: Frame) -> None:
        room = self._room(frame)
        if room is not None:
            self.store.upsert_room(room)
            self.store.set_current_room(room.id)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)

    def _on_created_room(self, frame: Frame) -> None:
        room = self._room(frame)
        if room is not None:
            self.store.upsert_room(room)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)

    def _on_left_room(self, frame: Frame) -> None:
        room = self._room(frame)
        current = self.store.current_room()
        if room is not None and current is not None and current.id == room.id:
            self.store.set_current_room(None)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)

    def _on_deleted_room(self, frame: Frame) -> None:
        room = self._room(frame)
        if room is not None:
            self.store.remove_room(room.id)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)

    def _on_current_rooms(self, frame: Frame) -> None:
        log = logging.getLogger('client.backend')
        try:
            rooms, errors = parse_room_list(frame.value)
        except FrameError as exc:
            log.error("%s; value=%r", exc, frame.value[:200])
            rooms, errors = [], []
        for exc in errors:
            log.error("%s (current_rooms entry skipped)", exc)
        self.store.replace_rooms(rooms)
        self.bus.notify(Topic.UPDATE_ROOMS_PANEL)


__all__ = ["BackendBridge", "DEFAULT_MAX_FRAME_BYTES"]
