from __future__ import annotations

"""
Error codes with human-readable titles for the protocol boundary.

Output format: "Error [<CODE>]: <Title>. Stage: <stage>. Details: <detail>"

Usage:
- raise FrameError('E101', 'Frame.decode', 'Expecting value: line 1 column 1')
- msg = format_error('E103', 'Nested.current_users', 'not a list')
"""

from dataclasses import dataclass
from typing import Optional


ERROR_TITLES: dict[str, str] = {
    'E101': 'Malformed protocol frame',
    'E102': 'Frame does not match the protocol schema',
    'E103': 'Malformed nested payload',
    'E104': 'Invalid identity or room record',
    'E105': 'Frame exceeds maximum size',
    'E106': 'Backend write failed',
}


def format_error(code: str, stage: str, detail: Optional[str] = None) -> str:
    title = ERROR_TITLES.get(code, 'Unknown error')
    stage = (stage or '').strip() or '-'
    detail = (detail or '').strip()
    base = f"Error [{code}]: {title}. Stage: {stage}."
    if detail:
        return f"{base} Details: {detail}"
    return base


@dataclass
class AppError(Exception):
    code: str
    stage: str
    detail: Optional[str] = None

    def __str__(self) -> str:
        return format_error(self.code, self.stage, self.detail)


class FrameError(AppError):
    """Raised by the decoders when untrusted backend text cannot be used."""


__all__ = ["ERROR_TITLES", "format_error", "AppError", "FrameError"]
