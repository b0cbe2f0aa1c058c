#!/usr/bin/env python3
from __future__ import annotations
import curses
import logging
import select
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

CLIENT_BIN_DIR = Path(__file__).resolve().parent
CLIENT_DIR = CLIENT_BIN_DIR.parent if CLIENT_BIN_DIR.name == 'bin' else CLIENT_BIN_DIR

# Allow running from a source checkout without installing the package
if str(CLIENT_DIR) not in sys.path and (CLIENT_DIR / 'pqc_tui').is_dir():
    sys.path.insert(0, str(CLIENT_DIR))

from pqc_tui.backend import BackendBridge
from pqc_tui.config import ClientConfig, load_config
from pqc_tui.event_bus import EventBus, Topic
from pqc_tui.input_controller import InputController, KeyEvent
from pqc_tui.logging_setup import close_logging, setup_logging
from pqc_tui.renderer import (
    CURRENT_USER,
    INPUT_BAR,
    MESSAGE_AREA,
    ROOMS_AREA,
    STATUS,
    USERS_AREA,
    Line,
    RendererBridge,
    Span,
    Surface,
)
from pqc_tui.state import StateStore
from pqc_tui.ui_utils import display_width, ellipsize, truncate_to_width

# Color pairs resolved in init_colors(); hex tag -> curses attribute
CP: Dict[str, int] = {'enabled': False}
_PAIR_BY_COLOR: Dict[int, int] = {}

_CURSES_KEYS = {
    curses.KEY_LEFT: ("\x1b[D", "left"),
    curses.KEY_RIGHT: ("\x1b[C", "right"),
    curses.KEY_HOME: ("\x1b[H", "home"),
    curses.KEY_END: ("\x1b[F", "end"),
    curses.KEY_BACKSPACE: ("\x7f", "backspace"),
    curses.KEY_DC: ("\x1b[3~", "delete"),
    curses.KEY_ENTER: ("\r", "return"),
    curses.KEY_F11: ("", "f11"),
    curses.KEY_F12: ("", "f12"),
}


def init_colors() -> None:
    if not curses.has_colors():
        return
    curses.start_color()
    try:
        curses.use_default_colors()
    except curses.error:
        pass
    base = [
        curses.COLOR_BLACK, curses.COLOR_RED, curses.COLOR_GREEN, curses.COLOR_YELLOW,
        curses.COLOR_BLUE, curses.COLOR_MAGENTA, curses.COLOR_CYAN, curses.COLOR_WHITE,
    ]
    for idx, color in enumerate(base, start=1):
        curses.init_pair(idx, color, -1)
        _PAIR_BY_COLOR[color] = idx
    CP['enabled'] = True


def _parse_hex(tag: str) -> Optional[tuple]:
    h = (tag or '').strip().lstrip('#')
    if len(h) == 3:
        h = ''.join(c * 2 for c in h)
    if len(h) != 6:
        return None
    try:
        return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)
    except ValueError:
        return None


def color_attr(tag: str, bold: bool = False) -> int:
    """Map a hex color tag onto the nearest of the 8 basic curses colors."""
    attr = curses.A_BOLD if bold else 0
    if not CP.get('enabled'):
        return attr
    rgb = _parse_hex(tag)
    if rgb is None:
        return attr
    r, g, b = (1 if c >= 0x80 else 0 for c in rgb)
    color = {
        (0, 0, 0): curses.COLOR_WHITE,  # dark tags stay readable on dark terminals
        (1, 0, 0): curses.COLOR_RED,
        (0, 1, 0): curses.COLOR_GREEN,
        (1, 1, 0): curses.COLOR_YELLOW,
        (0, 0, 1): curses.COLOR_BLUE,
        (1, 0, 1): curses.COLOR_MAGENTA,
        (0, 1, 1): curses.COLOR_CYAN,
        (1, 1, 1): curses.COLOR_WHITE,
    }[(r, g, b)]
    return curses.color_pair(_PAIR_BY_COLOR.get(color, 0)) | attr


def translate_key(ch) -> Optional[KeyEvent]:
    """Turn a curses get_wch() result into a key event."""
    if isinstance(ch, int):
        if ch in _CURSES_KEYS:
            seq, name = _CURSES_KEYS[ch]
            return KeyEvent(sequence=seq, name=name)
        return None
    if ch == '\x1b':
        return KeyEvent(sequence=ch, name='escape')
    if ch in ('\r', '\n'):
        return KeyEvent(sequence='\r', name='return')
    if ch in ('\x7f', '\x08'):
        return KeyEvent(sequence='\x7f', name='backspace')
    if len(ch) == 1 and ord(ch) < 32:
        return KeyEvent(sequence=ch, name=chr(ord(ch) + 96), ctrl=True)
    return KeyEvent(sequence=ch, name=ch.lower(), shift=ch.isupper())


class CursesSurface(Surface):
    """Keeps the latest lines per widget; `draw()` paints them."""

    def __init__(self, stdscr) -> None:
        self.stdscr = stdscr
        self.widgets: Dict[str, List[Line]] = {}
        self.debug_mode = False
        self.debug_lines: List[str] = []
        self.dirty = True

    def display_text(self, widget_id: str, lines: Sequence[Line]) -> None:
        self.widgets[widget_id] = [list(line) for line in lines]
        self.dirty = True

    def clear(self, widget_id: str) -> None:
        self.widgets.pop(widget_id, None)
        self.dirty = True

    def debug(self, text: str) -> None:
        self.debug_lines.append(f"{time.strftime('%H:%M:%S')} {text}")
        if len(self.debug_lines) > 300:
            del self.debug_lines[: len(self.debug_lines) - 300]
        if self.debug_mode:
            self.dirty = True

    def _put(self, y: int, x: int, line: Line, width: int) -> None:
        col = 0
        for span in line:
            if col >= width:
                break
            text = truncate_to_width(span.text.replace('\n', ' '), width - col)
            if not text:
                continue
            try:
                self.stdscr.addstr(y, x + col, text, color_attr(span.color, span.bold))
            except curses.error:
                # writing the bottom-right cell raises after the text is drawn
                pass
            col += display_width(text)

    def _box(self, widget_id: str, y: int, x: int, h: int, w: int, *, tail: bool = False) -> None:
        lines = self.widgets.get(widget_id, [])
        if tail:
            lines = lines[-h:] if h > 0 else []
        for i, line in enumerate(lines[:h]):
            self._put(y + i, x, line, w)

    def draw(self) -> None:
        if not self.dirty:
            return
        self.dirty = False
        scr = self.stdscr
        scr.erase()
        h, w = scr.getmaxyx()
        if h < 6 or w < 30:
            scr.addstr(0, 0, ellipsize("Terminal too small", w - 1))
            scr.refresh()
            return
        body_h = h - 3
        rooms_w = max(10, w // 8)
        users_w = max(16, w // 5)
        msg_x = rooms_w + 1
        msg_w = max(1, w - rooms_w - users_w - 2)
        users_x = msg_x + msg_w + 1
        for y in range(body_h):
            try:
                scr.addch(y, rooms_w, getattr(curses, "ACS_VLINE", "|"))
                scr.addch(y, users_x - 1, getattr(curses, "ACS_VLINE", "|"))
            except curses.error:
                pass
        self._box(ROOMS_AREA, 0, 0, body_h, rooms_w)
        if self.debug_mode:
            dbg = [[Span(s, "#8b949e")] for s in self.debug_lines[-body_h:]]
            for i, line in enumerate(dbg):
                self._put(i, msg_x, line, msg_w)
        else:
            self._box(MESSAGE_AREA, 0, msg_x, body_h, msg_w, tail=True)
        self._box(CURRENT_USER, 0, users_x, 1, users_w)
        self._box(USERS_AREA, 2, users_x, body_h - 2, users_w)
        try:
            scr.hline(body_h, 0, getattr(curses, "ACS_HLINE", "-"), w)
        except curses.error:
            pass
        self._box(INPUT_BAR, body_h + 1, 0, 1, w - 1)
        self._box(STATUS, body_h + 2, 0, 1, w - 1)
        scr.refresh()


class ClientApp:
    """Wires store, bus, backend bridge, input controller and renderer."""

    def __init__(self, cfg: ClientConfig, surface: CursesSurface) -> None:
        self.cfg = cfg
        self.surface = surface
        self.bus = EventBus()
        self.store = StateStore()
        self.backend = BackendBridge(self.store, self.bus, max_frame_bytes=cfg.max_frame_bytes)
        self.controller = InputController(self.store, self.bus, self.backend)
        self.renderer = RendererBridge(self.store, self.bus, surface)
        self.running = True
        self.exit_code: int = 0
        self.bus.subscribe(Topic.EXIT, "shell", self._on_exit)

    def _on_exit(self, value=None) -> None:
        code = (value or {}).get("code") if isinstance(value, dict) else None
        self.exit_code = int(code) if code is not None else 0
        if self.exit_code < 0:
            # killed by signal N: report it the way shells do
            self.exit_code = 128 - self.exit_code
        self.running = False

    def handle_key(self, ch) -> None:
        event = translate_key(ch)
        if event is None:
            return
        if self.surface.debug_mode or event.name == 'f12':
            self.surface.debug(f"key seq={event.sequence!r} name={event.name} ctrl={event.ctrl}")
        if self.controller.handle_key(event):
            return
        # Renderer-owned keys
        if event.name == 'f12':
            self.surface.debug_mode = not self.surface.debug_mode
            self.surface.dirty = True
        elif event.name == 'f11':
            self.surface.debug_mode = False
            self.surface.dirty = True

    def run(self, stdscr) -> int:
        log = logging.getLogger('client')
        self.renderer.refresh_all()
        try:
            self.backend.start(self.cfg.backend_cmd)
        except OSError:
            log.exception("Failed to start backend %s", self.cfg.backend_cmd)
            return 127
        stdin_fd = sys.stdin.fileno()
        out_fd = self.backend.stdout_fd()
        err_fd = self.backend.stderr_fd()
        try:
            while self.running:
                self.surface.draw()
                watch = [stdin_fd] + [fd for fd in (out_fd, err_fd) if fd is not None]
                try:
                    ready, _, _ = select.select(watch, [], [], 0.1)
                except InterruptedError:
                    continue
                if out_fd is not None and out_fd in ready:
                    if not self.backend.read_available():
                        out_fd = None
                if err_fd is not None and err_fd in ready:
                    if not self.backend.read_stderr():
                        err_fd = None
                if stdin_fd in ready or not ready:
                    self._drain_keys(stdscr)
                if self.running:
                    self.backend.poll_exit()
        finally:
            self.backend.stop()
            self.controller.close()
            self.renderer.close()
            self.store.clear()
        return self.exit_code

    def _drain_keys(self, stdscr) -> None:
        while self.running:
            try:
                ch = stdscr.get_wch()
            except curses.error:
                return
            if ch == curses.KEY_RESIZE:
                self.surface.dirty = True
                continue
            self.handle_key(ch)


def main(stdscr, cfg: ClientConfig) -> int:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.nodelay(True)
    stdscr.keypad(True)
    # Reduce latency for ESC-prefixed sequences
    try:
        curses.set_escdelay(25)
    except (AttributeError, curses.error):
        pass
    try:
        init_colors()
    except curses.error:
        CP['enabled'] = False
    app = ClientApp(cfg, CursesSurface(stdscr))
    return app.run(stdscr)


if __name__ == '__main__':
    cfg = load_config()
    logger = setup_logging(cfg)
    code = 0
    try:
        code = curses.wrapper(main, cfg)
    except curses.error as e:
        sys.stderr.write(f"[client] TUI init failed: {e}\n")
        sys.stderr.write(f"[client] isatty(stdin)={sys.stdin.isatty()} isatty(stdout)={sys.stdout.isatty()}\n")
        code = 2
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt; exiting")
    finally:
        logger.info("Client exiting with code %s", code)
        close_logging(logger)
    raise SystemExit(code)
