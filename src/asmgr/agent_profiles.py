"""
Agent profile registry.

An AgentProfile is a record of plain values and functions describing one
agent CLI: how to launch it, where it keeps history, how to read that
history, which screen lines are chrome, and which phrases mean it is
waiting on the user. New agents are added with register_profile(); nothing
subclasses a profile.
"""

import shlex
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .exceptions import ConfigError, NotFound
from .history_parsers import (
    ConversationEntry,
    HistoryContext,
    ResumeCandidate,
    aider_history_files,
    claude_history_files,
    codex_history_files,
    gemini_history_files,
    list_claude_conversations,
    list_codex_conversations,
    list_gemini_conversations,
    list_opencode_conversations,
    opencode_history_files,
    parse_aider_file,
    parse_claude_file,
    parse_codex_file,
    parse_gemini_file,
    parse_opencode_file,
)
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
from .status_patterns import (
    CapturedLine,
    FilterConfig,
    extract_claude_suggestion,
    extract_codex_suggestion,
    load_filters,
)

ArgvBuilder = Callable[[str, Optional[str], bool, Optional[str]], List[str]]
HistoryFiles = Callable[[HistoryContext], List[Path]]
HistoryParser = Callable[[Path, HistoryContext], List[ConversationEntry]]
ConversationLister = Callable[[str], List[ResumeCandidate]]
SuggestionExtractor = Callable[[List[CapturedLine]], str]


def _no_history(context: HistoryContext) -> List[Path]:
    return []


def _no_conversations(project_path: str) -> List[ResumeCandidate]:
    return []


def _no_suggestion(lines: List[CapturedLine]) -> str:
    return ""


def _unparsable(path: Path, context: HistoryContext) -> List[ConversationEntry]:
    return []


@dataclass
class AgentProfile:
    kind: str
    display_name: str
    icon: str
    command: str = ""
    auto_approve_flag: str = ""
    resume_flag: str = ""
    # Resume is a subcommand ("codex resume <id>") rather than a flag
    resume_is_subcommand: bool = False
    build_argv: Optional[ArgvBuilder] = None
    history_files: HistoryFiles = _no_history
    parse_history: HistoryParser = _unparsable
    list_conversations: ConversationLister = _no_conversations
    extract_suggestion: SuggestionExtractor = _no_suggestion
    filters: FilterConfig = field(default_factory=FilterConfig)
    waiting_markers: List[str] = field(default_factory=list)
    supports_fork: bool = False

    @property
    def supports_resume(self) -> bool:
        return bool(self.resume_flag)

    @property
    def supports_auto_approve(self) -> bool:
        return bool(self.auto_approve_flag)

    @property
    def has_history(self) -> bool:
        return self.history_files is not _no_history

    def argv(self, cwd: str, resume_id: Optional[str] = None,
             auto_approve: bool = False, custom_command: Optional[str] = None) -> List[str]:
        builder = self.build_argv or standard_argv(self)
        return builder(cwd, resume_id, auto_approve, custom_command)

    def binary(self, custom_command: Optional[str] = None) -> str:
        """Executable the launch argv starts with ('' for a plain shell)."""
        if self.kind == AGENT_CUSTOM:
            try:
                parts = shlex.split(custom_command or "")
            except ValueError:
                parts = (custom_command or "").split()
            return parts[0] if parts else ""
        return self.command

    def check_installed(self, custom_command: Optional[str] = None) -> None:
        """Raise NotFound if the agent's executable is not on PATH."""
        if self.kind == AGENT_TERMINAL:
            return
        binary = self.binary(custom_command)
        if not binary:
            raise ConfigError(f"No command configured for {self.display_name}")
        if shutil.which(binary) is None:
            raise NotFound(f"Command '{binary}' not found - is {self.display_name} installed?")


def standard_argv(profile: AgentProfile) -> ArgvBuilder:
    """argv builder shared by every agent with a fixed binary."""

    def build(cwd: str, resume_id: Optional[str], auto_approve: bool,
              custom_command: Optional[str]) -> List[str]:
        argv = [profile.command]
        auto = [profile.auto_approve_flag] if auto_approve and profile.auto_approve_flag else []
        if resume_id and profile.resume_flag and profile.resume_is_subcommand:
            argv += profile.resume_flag.split() + auto + [resume_id]
        else:
            argv += auto
            if resume_id and profile.resume_flag:
                argv += [profile.resume_flag, resume_id]
        return argv

    return build


def _custom_argv(cwd: str, resume_id: Optional[str], auto_approve: bool,
                 custom_command: Optional[str]) -> List[str]:
    # Run verbatim through the shell
    if not custom_command or not custom_command.strip():
        raise ConfigError("Custom agent needs a command")
    return [custom_command.strip()]


def _terminal_argv(cwd: str, resume_id: Optional[str], auto_approve: bool,
                   custom_command: Optional[str]) -> List[str]:
    return []


def _builtin_profiles() -> Dict[str, AgentProfile]:
    return {
        AGENT_CLAUDE: AgentProfile(
            kind=AGENT_CLAUDE, display_name="Claude Code", icon="✻",
            command="claude",
            auto_approve_flag="--dangerously-skip-permissions",
            resume_flag="--resume",
            history_files=claude_history_files,
            parse_history=parse_claude_file,
            list_conversations=list_claude_conversations,
            extract_suggestion=extract_claude_suggestion,
            waiting_markers=["? for shortcuts"],
            supports_fork=True,
        ),
        AGENT_GEMINI: AgentProfile(
            kind=AGENT_GEMINI, display_name="Gemini", icon="✦",
            command="gemini",
            resume_flag="--resume",
            history_files=gemini_history_files,
            parse_history=parse_gemini_file,
            list_conversations=list_gemini_conversations,
        ),
        AGENT_AIDER: AgentProfile(
            kind=AGENT_AIDER, display_name="Aider", icon="◆",
            command="aider",
            auto_approve_flag="--yes",
            history_files=aider_history_files,
            parse_history=parse_aider_file,
        ),
        AGENT_CODEX: AgentProfile(
            kind=AGENT_CODEX, display_name="Codex", icon="◎",
            command="codex",
            auto_approve_flag="--full-auto",
            resume_flag="resume",
            resume_is_subcommand=True,
            history_files=codex_history_files,
            parse_history=parse_codex_file,
            list_conversations=list_codex_conversations,
            extract_suggestion=extract_codex_suggestion,
        ),
        AGENT_AMAZONQ: AgentProfile(
            kind=AGENT_AMAZONQ, display_name="Amazon Q", icon="Q",
            command="q",
            auto_approve_flag="--trust-all-tools",
            resume_flag="chat --resume",
            resume_is_subcommand=True,
        ),
        AGENT_OPENCODE: AgentProfile(
            kind=AGENT_OPENCODE, display_name="OpenCode", icon="⌬",
            command="opencode",
            resume_flag="--session",
            history_files=opencode_history_files,
            parse_history=parse_opencode_file,
            list_conversations=list_opencode_conversations,
        ),
        AGENT_TERMINAL: AgentProfile(
            kind=AGENT_TERMINAL, display_name="Terminal", icon="$",
            build_argv=_terminal_argv,
        ),
        AGENT_CUSTOM: AgentProfile(
            kind=AGENT_CUSTOM, display_name="Custom", icon="⚙",
            build_argv=_custom_argv,
        ),
    }


_REGISTRY: Dict[str, AgentProfile] = _builtin_profiles()


def register_profile(profile: AgentProfile) -> None:
    """Add or replace a profile."""
    _REGISTRY[profile.kind] = profile


def get_profile(kind: str) -> AgentProfile:
    profile = _REGISTRY.get(kind)
    if profile is None:
        raise ConfigError(f"Unknown agent kind '{kind}'")
    return profile


def all_profiles() -> List[AgentProfile]:
    return list(_REGISTRY.values())


def apply_user_config(filter_overrides: Optional[Dict[str, Dict]] = None,
                      extra_waiting: Optional[List[str]] = None) -> None:
    """Fold config.yaml filter overrides and waiting markers into the registry."""
    filters = load_filters(filter_overrides)
    for kind, profile in list(_REGISTRY.items()):
        markers = list(dict.fromkeys(profile.waiting_markers + list(extra_waiting or [])))
        _REGISTRY[kind] = replace(
            profile,
            filters=filters.get(kind, profile.filters),
            waiting_markers=markers,
        )


def reset_registry() -> None:
    """Restore built-in profiles (tests)."""
    _REGISTRY.clear()
    _REGISTRY.update(_builtin_profiles())
    apply_user_config()


apply_user_config()
