"""
Activity classification from screen captures.

classify() is a pure function of (capture, previous fingerprint, patterns):
it never reads the clock or the multiplexer, so the Controller keeps the
previous fingerprint per window and feeds it back on the next tick.

Rules, in order:

1. Fingerprint the last N content lines (chrome and blank lines dropped).
   Same fingerprint as last tick -> Idle.
2. Any waiting marker in the tail of the capture, or a numbered option menu
   on the last non-blank line -> Waiting.
3. Otherwise the screen moved -> Busy.
"""

import hashlib
from dataclasses import dataclass, field
from typing import List, Optional

from .status_constants import ACTIVITY_BUSY, ACTIVITY_IDLE, ACTIVITY_WAITING
from .status_patterns import (
    NUMBERED_MENU_PATTERN,
    CapturedLine,
    FilterConfig,
    matches_waiting,
    split_capture,
    truncate_ansi,
    truncate_plain,
)

# Content lines hashed into the fingerprint
FINGERPRINT_LINES = 30
# Non-blank tail lines searched for waiting markers
WAITING_SCAN_LINES = 15

EMPTY_TEASER = CapturedLine(raw="", plain="")


@dataclass(frozen=True)
class ActivityResult:
    activity: str
    fingerprint: str
    teaser: CapturedLine = field(default=EMPTY_TEASER)


class ActivityClassifier:
    """Maps a capture to Idle / Busy / Waiting plus a status teaser."""

    def __init__(
        self,
        filters: Optional[FilterConfig] = None,
        waiting_markers: Optional[List[str]] = None,
        fingerprint_lines: int = FINGERPRINT_LINES,
    ):
        self.filters = filters or FilterConfig()
        self.waiting_markers = [m.lower() for m in waiting_markers or []]
        self.fingerprint_lines = fingerprint_lines

    def content_lines(self, lines: List[CapturedLine]) -> List[CapturedLine]:
        """Non-blank lines that are not agent chrome."""
        kept = []
        for line in lines:
            if not line.plain:
                continue
            skip, _ = self.filters.apply(line.plain)
            if not skip:
                kept.append(line)
        return kept

    def fingerprint(self, lines: List[CapturedLine]) -> str:
        tail = self.content_lines(lines)[-self.fingerprint_lines:]
        digest = hashlib.sha1()
        for line in tail:
            digest.update(line.plain.encode("utf-8", "replace"))
            digest.update(b"\n")
        return digest.hexdigest()

    def is_waiting(self, lines: List[CapturedLine]) -> bool:
        non_blank = [line.plain for line in lines if line.plain]
        if not non_blank:
            return False
        if NUMBERED_MENU_PATTERN.match(non_blank[-1]):
            return True
        return any(
            matches_waiting(plain, self.waiting_markers)
            for plain in non_blank[-WAITING_SCAN_LINES:]
        )

    def teaser(self, lines: List[CapturedLine], width: int = 80) -> CapturedLine:
        """Last non-blank, non-chrome line cropped to width."""
        for line in reversed(lines):
            if not line.plain:
                continue
            skip, replacement = self.filters.apply(line.plain)
            if skip:
                continue
            if replacement:
                text = truncate_plain(replacement, width)
                return CapturedLine(raw=text, plain=text)
            return CapturedLine(
                raw=truncate_ansi(line.raw.rstrip(), width),
                plain=truncate_plain(line.plain, width),
            )
        return EMPTY_TEASER

    def classify(self, capture: str, previous_fingerprint: Optional[str] = None,
                 width: int = 80) -> ActivityResult:
        lines = split_capture(capture)
        fingerprint = self.fingerprint(lines)
        teaser = self.teaser(lines, width)
        if previous_fingerprint is not None and fingerprint == previous_fingerprint:
            return ActivityResult(ACTIVITY_IDLE, fingerprint, teaser)
        if self.is_waiting(lines):
            return ActivityResult(ACTIVITY_WAITING, fingerprint, teaser)
        return ActivityResult(ACTIVITY_BUSY, fingerprint, teaser)
