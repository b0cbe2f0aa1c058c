from __future__ import annotations

"""
Key handling for the input bar.

Translates key events into edits of the store's input buffer or into bus
notifications (submit, exit). The controller also owns the submit flow:
log the text as a sent message, forward it to the backend, reset the buffer.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .backend import BackendBridge
from .event_bus import EventBus, Topic
from .protocol import T
from .slash_commands import is_quit_command
from .state import StateStore, post_message

SUBSCRIBER_ID = "input_controller"

# Keys the renderer handles itself (debug overlay / console)
PASS_THROUGH_KEYS = frozenset({"f11", "f12"})

_BACKSPACE_SEQS = ("\x7f", "\b", "\x08")
_ENTER_SEQS = ("\r", "\n")


@dataclass(frozen=True)
class KeyEvent:
    sequence: str = ""
    name: str = ""
    ctrl: bool = False
    shift: bool = False


def _action_for(event: KeyEvent) -> Optional[str]:
    seq = event.sequence or ""
    name = (event.name or "").lower()
    if name in PASS_THROUGH_KEYS:
        return None
    if seq in _ENTER_SEQS or name in ("return", "enter"):
        return "submit"
    if seq in _BACKSPACE_SEQS or name == "backspace":
        return "backspace"
    if seq == "\x1b[3~" or name == "delete":
        return "delete"
    if seq == "\x1b[D" or name == "left":
        return "left"
    if seq == "\x1b[C" or name == "right":
        return "right"
    if seq in ("\x1b[H", "\x1b[1~") or name == "home":
        return "home"
    if seq in ("\x1b[F", "\x1b[4~") or name == "end":
        return "end"
    if seq == "\x1b" or name == "escape":
        return "exit"
    if event.ctrl and name == "c":
        return "exit"
    if len(seq) == 1 and not event.ctrl and seq.isprintable():
        return "insert"
    return None


class InputController:
    def __init__(self, store: StateStore, bus: EventBus, backend: BackendBridge) -> None:
        self.store = store
        self.bus = bus
        self.backend = backend
        bus.subscribe(Topic.SEND_MESSAGE, SUBSCRIBER_ID, self._on_submit)

    def close(self) -> None:
        self.bus.unsubscribe(SUBSCRIBER_ID, Topic.SEND_MESSAGE)

    def handle_key(self, event: KeyEvent) -> bool:
        """Apply one key; False when the key is not ours (renderer pass-through)."""
        action = _action_for(event)
        if action is None:
            return False
        buf = self.store.input
        if action == "submit":
            if buf.text.strip():
                self.bus.notify(Topic.SEND_MESSAGE)
            return True
        if action == "exit":
            self.bus.notify(Topic.EXIT, {"code": 0})
            return True
        if action == "insert":
            buf.insert(event.sequence)
        elif action == "backspace":
            buf.backspace()
        elif action == "delete":
            buf.delete()
        elif action == "left":
            buf.move_left()
        elif action == "right":
            buf.move_right()
        elif action == "home":
            buf.move_home()
        elif action == "end":
            buf.move_end()
        self.bus.notify(Topic.UPDATE_INPUT_BAR)
        return True

    def _on_submit(self, _value=None) -> None:
        buf = self.store.input
        text = buf.text
        if not text.strip():
            return
        if is_quit_command(text):
            logging.getLogger('client').info("Quit command %r", text.strip())
            buf.reset()
            self.bus.notify(Topic.UPDATE_INPUT_BAR)
            self.bus.notify(Topic.EXIT, {"code": 0})
            return
        user = self.store.current_user
        post_message(self.store, self.bus, text, is_sent=True, color=user.color if user else None)
        self.backend.send(T.SEND, text)
        buf.reset()
        self.bus.notify(Topic.UPDATE_INPUT_BAR)


__all__ = ["KeyEvent", "InputController", "PASS_THROUGH_KEYS"]
