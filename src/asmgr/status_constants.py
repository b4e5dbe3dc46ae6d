"""
Status constants and mappings for asmgr.

Centralizes the lifecycle, activity, agent-kind and diff-mode values and the
icons and colors the presentation layer uses for them.
"""

from typing import Tuple


# =============================================================================
# Instance Lifecycle
# =============================================================================

STATUS_STOPPED = "stopped"
STATUS_RUNNING = "running"

ALL_STATUSES = [STATUS_STOPPED, STATUS_RUNNING]


# =============================================================================
# Activity Classes
# =============================================================================

ACTIVITY_IDLE = "idle"
ACTIVITY_BUSY = "busy"
ACTIVITY_WAITING = "waiting"

ALL_ACTIVITIES = [ACTIVITY_IDLE, ACTIVITY_BUSY, ACTIVITY_WAITING]


# =============================================================================
# Agent Kinds
# =============================================================================

AGENT_CLAUDE = "claude"
AGENT_GEMINI = "gemini"
AGENT_AIDER = "aider"
AGENT_CODEX = "codex"
AGENT_AMAZONQ = "amazonq"
AGENT_OPENCODE = "opencode"
AGENT_TERMINAL = "terminal"
AGENT_CUSTOM = "custom"

ALL_AGENTS = [
    AGENT_CLAUDE,
    AGENT_GEMINI,
    AGENT_AIDER,
    AGENT_CODEX,
    AGENT_AMAZONQ,
    AGENT_OPENCODE,
    AGENT_TERMINAL,
    AGENT_CUSTOM,
]


# =============================================================================
# Conversation Roles
# =============================================================================

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"


# =============================================================================
# Diff Modes
# =============================================================================

DIFF_MODE_FULL = "full"
DIFF_MODE_SESSION = "session"


# =============================================================================
# Display Mappings
# =============================================================================

ACTIVITY_ICONS = {
    ACTIVITY_BUSY: "●",
    ACTIVITY_WAITING: "◐",
    ACTIVITY_IDLE: "○",
}

ACTIVITY_COLORS = {
    ACTIVITY_BUSY: "green",
    ACTIVITY_WAITING: "yellow",
    ACTIVITY_IDLE: "dim",
}

STOPPED_ICON = "■"
STOPPED_COLOR = "red"


def get_activity_display(status: str, activity: str) -> Tuple[str, str]:
    """Return (icon, rich color) for an instance's list row."""
    if status != STATUS_RUNNING:
        return STOPPED_ICON, STOPPED_COLOR
    return (
        ACTIVITY_ICONS.get(activity, ACTIVITY_ICONS[ACTIVITY_IDLE]),
        ACTIVITY_COLORS.get(activity, ACTIVITY_COLORS[ACTIVITY_IDLE]),
    )
