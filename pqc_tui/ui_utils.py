from __future__ import annotations

"""
Display-width helpers shared between the renderer and the curses surface.
"""

import functools
import unicodedata

from wcwidth import wcwidth


_ZERO_WIDTH = {
    "\u200b",  # ZERO WIDTH SPACE
    "\u200c",  # ZERO WIDTH NON-JOINER
    "\u200d",  # ZERO WIDTH JOINER
    "\u200e",  # LEFT-TO-RIGHT MARK
    "\u200f",  # RIGHT-TO-LEFT MARK
    "\ufeff",  # ZERO WIDTH NO-BREAK SPACE (BOM)
    "\ufe0e",  # VARIATION SELECTOR-15
    "\ufe0f",  # VARIATION SELECTOR-16
}


def _is_zero_width(ch: str) -> bool:
    if ch in _ZERO_WIDTH:
        return True
    # Cf includes many format/zero-width chars
    return unicodedata.category(ch) == "Cf" or bool(unicodedata.combining(ch))


@functools.lru_cache(maxsize=4096)
def char_width(ch: str) -> int:
    if _is_zero_width(ch):
        return 0
    w = wcwidth(ch)
    if w is None or w < 0:
        # control characters are never drawn
        return 0
    return int(w)


def display_width(s: str) -> int:
    return sum(char_width(ch) for ch in (s or ""))


def truncate_to_width(s: str, width: int) -> str:
    """Trim string so its display width is <= width (Unicode-aware)."""
    if width <= 0:
        return ""
    out: list[str] = []
    cols = 0
    for ch in (s or ""):
        w = char_width(ch)
        if w == 0:
            if out:
                out.append(ch)
            continue
        if cols + w > width:
            break
        out.append(ch)
        cols += w
    return "".join(out)


def ellipsize(s: str, width: int) -> str:
    """Trim right and append an ellipsis when `s` does not fit."""
    if width <= 0:
        return ""
    if display_width(s) <= width:
        return s
    if width == 1:
        return "…"
    return truncate_to_width(s, width - 1) + "…"


__all__ = [
    "char_width",
    "display_width",
    "truncate_to_width",
    "ellipsize",
]
