"""Client-side bridge between the terminal UI and the chat backend process.

Protocol framing, the state store, the event bus and the input controller
live here; the curses shell in `bin/client.py` wires them together.
"""

__all__ = [
    "protocol",
    "backend",
    "event_bus",
    "state",
    "input_controller",
    "renderer",
]
