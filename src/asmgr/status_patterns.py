"""
Centralized screen-capture patterns.

This module holds the per-agent chrome filters (lines belonging to an
agent's UI frame: separators, prompt boxes, status footers), the markers
that mean an agent is waiting on the user, and the helpers that turn a raw
ANSI capture into plain text for matching.

Filters can be overridden per agent from config.yaml:

    filters:
      claude:
        skip_contains: ["? for", "Context left"]
        min_separators: 20
"""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

from rich.cells import cell_len

from .status_constants import (
    AGENT_AIDER,
    AGENT_AMAZONQ,
    AGENT_CLAUDE,
    AGENT_CODEX,
    AGENT_CUSTOM,
    AGENT_GEMINI,
    AGENT_OPENCODE,
    AGENT_TERMINAL,
)

# Regex to match ANSI escape sequences (colors, cursor movement, OSC titles)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")

SEPARATOR_CHARS = ("─", "━")
# A line with more separator characters than this is a horizontal rule
DEFAULT_SEPARATOR_THRESHOLD = 20

# Case-insensitive substrings meaning the agent is blocked on the user
WAITING_MARKERS: List[str] = [
    "allow once",
    "allow always",
    "yes, allow",
    "no, and tell",
    "esc to cancel",
    "do you want to proceed",
    "waiting for user",
    "waiting for tool",
    "apply this change",
    "press enter",
    "(y/n)",
    "[y/n]",
]

# Numbered option menu on the last non-blank line, e.g. "❯ 1. Yes"
NUMBERED_MENU_PATTERN = re.compile(r"^\s*(?:[❯>›▶]\s*)?\d+[.)]\s+\S")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text.

    tmux capture-pane -e preserves color codes for rendering, but pattern
    matching and width measurement need plain text.
    """
    return ANSI_ESCAPE_PATTERN.sub("", text)


def separator_count(plain: str) -> int:
    return sum(plain.count(ch) for ch in SEPARATOR_CHARS)


def is_separator_line(plain: str, threshold: int = DEFAULT_SEPARATOR_THRESHOLD) -> bool:
    return separator_count(plain) > threshold


def truncate_plain(plain: str, width: int) -> str:
    """Crop plain text to a terminal cell width."""
    if width <= 0:
        return ""
    if cell_len(plain) <= width:
        return plain
    out = []
    used = 0
    for ch in plain:
        w = cell_len(ch)
        if used + w > width:
            break
        out.append(ch)
        used += w
    return "".join(out)


def truncate_ansi(raw: str, width: int) -> str:
    """Crop an ANSI-bearing line to `width` visible cells, keeping escapes."""
    if width <= 0:
        return ""
    if cell_len(strip_ansi(raw)) <= width:
        return raw
    out = []
    used = 0
    pos = 0
    had_escape = False
    for match in ANSI_ESCAPE_PATTERN.finditer(raw):
        segment = raw[pos:match.start()]
        cropped = truncate_plain(segment, width - used)
        out.append(cropped)
        used += cell_len(cropped)
        if len(cropped) < len(segment):
            break
        out.append(match.group(0))
        had_escape = True
        pos = match.end()
    else:
        out.append(truncate_plain(raw[pos:], width - used))
    result = "".join(out)
    if had_escape:
        result += "\x1b[0m"
    return result


@dataclass(frozen=True)
class CapturedLine:
    """One capture line in both forms: raw for display, plain for matching."""
    raw: str
    plain: str

    @classmethod
    def from_raw(cls, raw: str) -> "CapturedLine":
        return cls(raw=raw, plain=strip_ansi(raw).strip())


def split_capture(capture: str) -> List[CapturedLine]:
    return [CapturedLine.from_raw(line) for line in capture.split("\n")] if capture else []


@dataclass
class FilterConfig:
    """Chrome filter rules for one agent.

    A line is chrome (skip=True) when it has more than min_separators rule
    characters, equals a skip_exact entry, or starts / ends with / contains
    one of the skip lists. show_contains maps matching lines to a fixed
    teaser (show_as). content_prefix extracts the text after a gutter
    character and hides extractions shorter than min_content_len.
    """
    skip_contains: List[str] = field(default_factory=list)
    skip_prefixes: List[str] = field(default_factory=list)
    skip_suffixes: List[str] = field(default_factory=list)
    skip_exact: List[str] = field(default_factory=list)
    min_separators: int = 0
    content_prefix: str = ""
    min_content_len: int = 0
    show_contains: List[str] = field(default_factory=list)
    show_as: List[str] = field(default_factory=list)

    def apply(self, plain: str) -> Tuple[bool, str]:
        """Return (skip, replacement) for a stripped plain line."""
        if self.min_separators > 0 and separator_count(plain) > self.min_separators:
            return True, ""
        if plain in self.skip_exact:
            return True, ""
        if any(plain.startswith(p) for p in self.skip_prefixes):
            return True, ""
        if any(plain.endswith(s) for s in self.skip_suffixes):
            return True, ""
        if any(c in plain for c in self.skip_contains):
            return True, ""
        for i, needle in enumerate(self.show_contains):
            if needle in plain:
                return False, self.show_as[i] if i < len(self.show_as) else needle
        if self.content_prefix and plain.startswith(self.content_prefix):
            extracted = plain[len(self.content_prefix):].strip()
            if len(extracted) >= self.min_content_len:
                return False, extracted
            return True, ""
        return False, ""

    def merged(self, overrides: Dict[str, Any]) -> "FilterConfig":
        """Copy with the known keys of `overrides` replacing defaults."""
        known = {f.name for f in fields(self)}
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in overrides.items():
            if key in known:
                values[key] = value
        return FilterConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def default_filters() -> Dict[str, FilterConfig]:
    """Built-in chrome filters for every agent kind."""
    return {
        AGENT_CLAUDE: FilterConfig(
            skip_contains=["? for", "Context left", "accept edits"],
            skip_prefixes=["╭", "╰"],
            skip_exact=[">"],
            min_separators=20,
        ),
        AGENT_GEMINI: FilterConfig(
            skip_contains=["Type your message"],
            skip_prefixes=["╭", "╰", "│", ">", "~/"],
            min_separators=20,
        ),
        AGENT_AIDER: FilterConfig(
            skip_prefixes=[">", "aider>"],
            min_separators=20,
        ),
        AGENT_CODEX: FilterConfig(
            skip_contains=["context left", "? for"],
            skip_prefixes=[">", "codex>", "›", "╭", "╰", "│"],
            min_separators=20,
        ),
        AGENT_AMAZONQ: FilterConfig(
            skip_contains=["Amazon Q"],
            skip_prefixes=[">"],
            min_separators=20,
        ),
        AGENT_OPENCODE: FilterConfig(
            skip_contains=[
                "ctrl+?", "Context:", "press enter to send", "press esc",
                "No diagnostics", "GPT-4o", "Cost:",
            ],
            skip_prefixes=["└", "├", "│", "Glob:", "List:", "Task:"],
            skip_exact=[">", "›"],
            min_separators=15,
            content_prefix="┃",
            min_content_len=15,
            show_contains=["Generating"],
            show_as=["Generating..."],
        ),
        AGENT_TERMINAL: FilterConfig(),
        AGENT_CUSTOM: FilterConfig(),
    }


def load_filters(overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, FilterConfig]:
    """Built-in filters with config.yaml overrides applied."""
    filters = default_filters()
    for agent, cfg in (overrides or {}).items():
        base = filters.get(agent, FilterConfig())
        filters[agent] = base.merged(cfg)
    return filters


def matches_waiting(plain: str, extra_markers: Optional[List[str]] = None) -> bool:
    lowered = plain.lower()
    if any(m in lowered for m in WAITING_MARKERS):
        return True
    return any(m in lowered for m in extra_markers or [])


# =============================================================================
# Suggestion extraction
# =============================================================================

def _normalize_prompt(plain: str) -> str:
    # Claude puts a non-breaking space after its prompt character
    return plain.replace("\u00a0", " ")


def extract_claude_suggestion(lines: List[CapturedLine]) -> str:
    """Ghost-text suggestion on the "> " line between the last two rules."""
    separators = [i for i, line in enumerate(lines) if is_separator_line(line.plain)]
    if len(separators) < 2:
        return ""
    top, bottom = separators[-2], separators[-1]
    for line in lines[top + 1:bottom]:
        plain = _normalize_prompt(line.plain)
        if plain.startswith("> ") and len(plain) > 2:
            return plain[2:].strip()
    return ""


def extract_codex_suggestion(lines: List[CapturedLine]) -> str:
    """Codex shows its suggestion after the "›" prompt near the bottom."""
    for line in reversed(lines[-10:]):
        plain = _normalize_prompt(line.plain)
        if not plain:
            continue
        if plain.startswith("› ") and len(plain) > 2:
            return plain[2:].strip()
    return ""
