from __future__ import annotations

"""
Single-line text buffer with a caret.

Supports insertion, deletion and caret movement by characters. Every
operation keeps the caret inside [0..len(text)].
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class TextEditor:
    text: str = ""
    caret: int = 0  # caret index in [0..len(text)]

    def clamp(self) -> None:
        if self.caret < 0:
            self.caret = 0
        if self.caret > len(self.text):
            self.caret = len(self.text)

    def set(self, text: str, caret: Optional[int] = None) -> None:
        self.text = text or ""
        if caret is not None:
            self.caret = int(caret)
        self.clamp()

    def reset(self) -> None:
        self.text = ""
        self.caret = 0

    def insert(self, s: str) -> None:
        if not s:
            return
        self.clamp()
        self.text = self.text[: self.caret] + s + self.text[self.caret :]
        self.caret += len(s)

    def backspace(self) -> None:
        if self.caret <= 0:
            return
        self.text = self.text[: self.caret - 1] + self.text[self.caret :]
        self.caret -= 1

    def delete(self) -> None:
        if self.caret >= len(self.text):
            return
        self.text = self.text[: self.caret] + self.text[self.caret + 1 :]

    def move_left(self) -> None:
        if self.caret > 0:
            self.caret -= 1

    def move_right(self) -> None:
        if self.caret < len(self.text):
            self.caret += 1

    def move_home(self) -> None:
        self.caret = 0

    def move_end(self) -> None:
        self.caret = len(self.text)


__all__ = ["TextEditor"]
