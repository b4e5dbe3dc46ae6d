"""
Pure render functions shared by the TUI and the CLI.

All functions take data and return Rich Text objects, so they can be unit
tested without Textual.
"""

from datetime import datetime
from typing import List, Optional

from rich.text import Text

from .activity import EMPTY_TEASER
from .agent_profiles import get_profile
from .diff_engine import DiffResult
from .exceptions import ConfigError
from .history_index import SearchMatch
from .history_parsers import ConversationMessage
from .models import Group, InstanceRecord
from .status_constants import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, get_activity_display
from .status_patterns import CapturedLine

ORANGE = "#ff8700"

DIFF_STYLES = (
    ("diff --git", f"bold {ORANGE}"),
    ("+++", f"bold {ORANGE}"),
    ("---", f"bold {ORANGE}"),
    ("@@", "cyan"),
    ("index ", "dim"),
    ("new file mode", "dim"),
    ("deleted file mode", "dim"),
    ("similarity index", "dim"),
    ("rename from", "dim"),
    ("rename to", "dim"),
    ("old mode", "dim"),
    ("new mode", "dim"),
    ("Binary files", "dim"),
    ("\\ No newline", "dim"),
    ("+", "green"),
    ("-", "red"),
)


def diff_line_style(line: str) -> str:
    """Rich style for one unified-diff line ('' for context lines)."""
    for prefix, style in DIFF_STYLES:
        if line.startswith(prefix):
            return style
    return ""


def render_diff(content: str) -> Text:
    """Colorize unified diff text line by line."""
    text = Text()
    for line in content.splitlines():
        text.append(line, style=diff_line_style(line) or None)
        text.append("\n")
    return text


def render_diff_result(result: Optional[DiffResult]) -> Text:
    if result is None:
        return Text("Computing diff…", style="dim")
    if result.error:
        return Text(f"Diff unavailable: {result.error}", style="red")
    text = Text()
    if result.note:
        text.append(f"{result.note}\n", style="yellow")
    text.append(f"+{result.added}", style="green")
    text.append(" ")
    text.append(f"-{result.removed}", style="red")
    text.append(f"  ({result.mode})\n\n", style="dim")
    if result.is_empty:
        text.append("No changes", style="dim")
    else:
        text.append_text(render_diff(result.content))
    return text


def agent_icon(kind: str) -> str:
    try:
        return get_profile(kind).icon
    except ConfigError:
        return "?"


def render_session_row(
    record: InstanceRecord,
    activity: str,
    teaser: CapturedLine = EMPTY_TEASER,
    selected: bool = False,
    compact: bool = False,
    indent: int = 0,
) -> Text:
    """One session-list row: status icon, agent, name, tabs, teaser."""
    icon, color = get_activity_display(record.status, activity)
    row_style = ""
    if record.full_row_color and record.bg_color:
        row_style = f"on {record.bg_color}"
    text = Text(style=row_style)
    text.append("  " * indent)
    text.append("▶ " if selected else "  ", style="bold")
    text.append(f"{icon} ", style=color)
    text.append(f"{agent_icon(record.agent)} ", style="dim")
    name_style = "bold" if selected else ""
    if record.color:
        name_style = f"{name_style} {record.color}".strip()
    if record.bg_color and not record.full_row_color:
        name_style = f"{name_style} on {record.bg_color}".strip()
    text.append(record.name, style=name_style or None)
    if record.favorite:
        text.append(" ★", style="yellow")
    tabs = len(record.windows) - 1
    if tabs > 0:
        text.append(f" +{tabs}", style="dim")
    if not compact and teaser.raw:
        text.append("  ")
        text.append_text(Text.from_ansi(teaser.raw, style="dim"))
    return text


def render_group_header(group: Group, running: int, total: int) -> Text:
    arrow = "▸" if group.collapsed else "▾"
    style = "bold"
    if group.color:
        style = f"bold {group.color}"
    if group.bg_color:
        style = f"{style} on {group.bg_color}"
    text = Text()
    text.append(f"{arrow} {group.name}", style=style)
    text.append(f"  {running}/{total}", style="dim")
    return text


def render_search_match(match: SearchMatch, names: Optional[dict] = None) -> Text:
    """One search result: when, agent, where it resolved, snippet."""
    entry = match.entry
    text = Text()
    text.append(format_timestamp(entry.timestamp), style="dim")
    text.append(f" {agent_icon(entry.agent)} ", style="cyan")
    if match.instance_id:
        label = (names or {}).get(match.instance_id, match.instance_id)
        if match.tab_index is not None:
            label = f"{label}:{match.tab_index}"
        text.append(f"[{label}] ", style="green")
    text.append(f"{entry.role}: ", style="bold")
    text.append(entry.snippet or entry.content[:100])
    return text


def format_timestamp(ts: datetime, now: Optional[datetime] = None) -> str:
    """Short local time: HH:MM today, 'Mon DD' otherwise."""
    local = ts.astimezone()
    now = (now or datetime.now(local.tzinfo)).astimezone(local.tzinfo)
    if local.date() == now.date():
        return local.strftime("%H:%M")
    return local.strftime("%b %d")


def render_windows(record: InstanceRecord) -> List[Text]:
    """Tab list for the preview header."""
    rows = []
    for window in record.windows:
        text = Text()
        text.append(f"{window.index}:", style="dim")
        text.append(window.name, style="red" if window.dead else "")
        if window.dead:
            text.append(" (exited)", style="dim red")
        rows.append(text)
    return rows


ROLE_STYLES = {
    ROLE_USER: ("user", "bold green"),
    ROLE_ASSISTANT: ("assistant", "bold cyan"),
    ROLE_SYSTEM: ("system", "bold dim"),
}


def render_conversation(messages: List[ConversationMessage], highlight: str = "") -> Text:
    """A whole conversation for the search preview, query terms highlighted."""
    text = Text()
    for i, message in enumerate(messages):
        if i:
            text.append("\n\n")
        label, style = ROLE_STYLES.get(message.role, (message.role, "bold"))
        text.append(label, style=style)
        if message.timestamp is not None:
            text.append(f"  {format_timestamp(message.timestamp)}", style="dim")
        text.append("\n")
        text.append(message.content)
    if highlight.strip():
        text.highlight_words([highlight.strip()], style="reverse", case_sensitive=False)
    return text
