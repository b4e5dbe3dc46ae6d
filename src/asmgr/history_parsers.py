"""
Readers for each agent's on-disk conversation history.

Every agent keeps its conversations somewhere different:

- Claude:   ~/.claude/projects/<encoded cwd>/<session uuid>.jsonl
- Gemini:   ~/.gemini/tmp/<sha256(cwd)>/chats/session-*.json
- Aider:    <project>/.aider.chat.history.md, ~/.aider/history.jsonl, ~/.aider.history
- Codex:    ~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl
- OpenCode: ~/.local/share/opencode/storage/{session,message,part}/...

Parsers return ConversationEntry records in chronological order. A file
that cannot be read or decoded raises ParseError; the index logs and skips
it. Lines inside a file that do not decode are skipped silently, since
agents append to these files while we read them.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import ParseError
from .logging_config import get_logger
from .status_constants import (
    AGENT_AIDER,
    AGENT_CLAUDE,
    AGENT_CODEX,
    AGENT_GEMINI,
    AGENT_OPENCODE,
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
)

logger = get_logger("history")

UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

# User "messages" that are really tool plumbing
TOOL_RESULT_PREFIXES = ("<bash-notification>", "<tool_result>", '{"tool_use_id":')

PROMPT_PREVIEW_LEN = 80

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class ConversationEntry:
    """One searchable message from an agent's history."""
    agent: str
    source_path: str
    timestamp: datetime
    role: str
    content: str
    snippet: str = ""
    session_id: str = ""
    # Working directory the conversation ran in, when the source records it
    cwd: str = ""
    # Set only for entries captured from a live terminal tab
    instance_id: str = ""
    tab_index: Optional[int] = None


@dataclass
class ConversationMessage:
    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass
class ResumeCandidate:
    """A prior conversation an agent can be relaunched into."""
    session_id: str
    first_prompt: str
    last_prompt: str
    message_count: int
    created_at: datetime
    updated_at: datetime
    source_path: str = ""


@dataclass
class HistoryContext:
    """What the parsers know about managed instances.

    Some stores do not record the working directory in plain text (Gemini
    hashes it, Aider's global history omits it), so the index passes the
    paths of known instances for reverse lookup.
    """
    known_paths: List[str] = field(default_factory=list)
    aider_default_path: str = ""

    def gemini_hash_map(self) -> Dict[str, str]:
        return {gemini_project_hash(p): p for p in self.known_paths if p}


# =============================================================================
# Shared helpers
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch (s/ms) to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
        return parsed
    return None


def file_mtime(path: Path) -> datetime:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return EPOCH


def truncate_prompt(text: str, max_len: int = PROMPT_PREVIEW_LEN) -> str:
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[:max_len - 1] + "…"


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ParseError(path, str(e)) from e


def _read_json(path: Path) -> Any:
    try:
        return json.loads(_read_text(path))
    except json.JSONDecodeError as e:
        raise ParseError(path, str(e)) from e


def _iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    for line in _read_text(path).splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            yield data


def _safe_glob(root: Path, pattern: str) -> List[Path]:
    if not root.is_dir():
        return []
    try:
        return sorted(p for p in root.glob(pattern) if p.is_file())
    except OSError as e:
        logger.warning("Cannot scan %s: %s", root, e)
        return []


# =============================================================================
# Claude Code
# =============================================================================

def claude_projects_dir() -> Path:
    return Path.home() / ".claude" / "projects"


def encode_claude_path(project_path: str) -> str:
    """Claude's directory name for a cwd: /home/u/my_proj -> -home-u-my-proj."""
    try:
        project_path = str(Path(project_path).resolve())
    except OSError:
        pass
    encoded = "".join(
        "-" if ch in "/_ " or ord(ch) > 127 else ch
        for ch in project_path
    )
    return "-" + encoded.lstrip("-")


def claude_project_dir(project_path: str) -> Path:
    return claude_projects_dir() / encode_claude_path(project_path)


def claude_message_text(content: Any) -> str:
    """Text of a Claude message body: a string or a list of blocks."""
    if isinstance(content, str):
        if content.startswith(TOOL_RESULT_PREFIXES):
            return ""
        return content
    if isinstance(content, list):
        texts = []
        for block in content:
            if not isinstance(block, dict) or block.get("type") == "tool_result":
                continue
            if block.get("type", "text") == "text" and isinstance(block.get("text"), str):
                texts.append(block["text"])
        return "\n".join(t for t in texts if t)
    return ""


def claude_history_files(context: HistoryContext) -> List[Path]:
    return _safe_glob(claude_projects_dir(), "*/*.jsonl")


def parse_claude_file(path: Path, context: Optional[HistoryContext] = None) -> List[ConversationEntry]:
    entries = []
    session_id = path.stem if UUID_PATTERN.match(path.stem) else ""
    cwd = ""
    fallback_ts = file_mtime(path)
    for record in _iter_jsonl(path):
        session_id = session_id or record.get("sessionId") or ""
        cwd = cwd or record.get("cwd") or ""
        kind = record.get("type")
        if kind not in (ROLE_USER, ROLE_ASSISTANT):
            continue
        if record.get("isSidechain") or record.get("agentId"):
            continue
        message = record.get("message")
        if not isinstance(message, dict):
            continue
        text = claude_message_text(message.get("content"))
        if not text.strip():
            continue
        entries.append(ConversationEntry(
            agent=AGENT_CLAUDE,
            source_path=str(path),
            timestamp=parse_timestamp(record.get("timestamp")) or fallback_ts,
            role=kind,
            content=text,
            session_id=session_id,
            cwd=cwd,
        ))
    return entries


def list_claude_conversations(project_path: str) -> List[ResumeCandidate]:
    """Resumable Claude conversations for a cwd, newest first."""
    directory = claude_project_dir(project_path)
    candidates = []
    for path in _safe_glob(directory, "*.jsonl"):
        if not UUID_PATTERN.match(path.stem):
            continue
        try:
            prompts = [e for e in parse_claude_file(path) if e.role == ROLE_USER]
        except ParseError as e:
            logger.warning("Skipping Claude session %s: %s", path, e.reason)
            continue
        if not prompts:
            continue
        candidates.append(ResumeCandidate(
            session_id=path.stem,
            first_prompt=truncate_prompt(prompts[0].content),
            last_prompt=truncate_prompt(prompts[-1].content),
            message_count=len(prompts),
            created_at=prompts[0].timestamp,
            updated_at=prompts[-1].timestamp,
            source_path=str(path),
        ))
    candidates.sort(key=lambda c: c.updated_at, reverse=True)
    return candidates


# =============================================================================
# Gemini CLI
# =============================================================================

def gemini_tmp_dir() -> Path:
    return Path.home() / ".gemini" / "tmp"


def gemini_project_hash(project_path: str) -> str:
    return hashlib.sha256(project_path.encode("utf-8")).hexdigest()


def gemini_history_files(context: HistoryContext) -> List[Path]:
    return _safe_glob(gemini_tmp_dir(), "*/chats/session-*.json")


def parse_gemini_file(path: Path, context: Optional[HistoryContext] = None) -> List[ConversationEntry]:
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ParseError(path, "expected a session object")
    project_hash = data.get("projectHash") or path.parent.parent.name
    cwd = (context or HistoryContext()).gemini_hash_map().get(project_hash, "")
    session_id = data.get("sessionId") or ""
    fallback_ts = parse_timestamp(data.get("lastUpdated")) or file_mtime(path)
    entries = []
    for msg in data.get("messages") or []:
        if not isinstance(msg, dict):
            continue
        kind = msg.get("type")
        if kind == "user":
            role = ROLE_USER
        elif kind in ("gemini", "model", "assistant"):
            role = ROLE_ASSISTANT
        else:
            # error / info notices
            continue
        content = msg.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        entries.append(ConversationEntry(
            agent=AGENT_GEMINI,
            source_path=str(path),
            timestamp=parse_timestamp(msg.get("timestamp")) or fallback_ts,
            role=role,
            content=content,
            session_id=session_id,
            cwd=cwd,
        ))
    return entries


def list_gemini_conversations(project_path: str) -> List[ResumeCandidate]:
    directory = gemini_tmp_dir() / gemini_project_hash(project_path) / "chats"
    context = HistoryContext(known_paths=[project_path])
    candidates = []
    for path in _safe_glob(directory, "session-*.json"):
        try:
            entries = parse_gemini_file(path, context)
        except ParseError as e:
            logger.warning("Skipping Gemini session %s: %s", path, e.reason)
            continue
        prompts = [e for e in entries if e.role == ROLE_USER]
        if not prompts or not prompts[0].session_id:
            continue
        candidates.append(ResumeCandidate(
            session_id=prompts[0].session_id,
            first_prompt=truncate_prompt(prompts[0].content),
            last_prompt=truncate_prompt(prompts[-1].content),
            message_count=len(prompts),
            created_at=prompts[0].timestamp,
            updated_at=entries[-1].timestamp,
            source_path=str(path),
        ))
    candidates.sort(key=lambda c: c.updated_at, reverse=True)
    return candidates


# =============================================================================
# Aider
# =============================================================================

AIDER_CHAT_FILE = ".aider.chat.history.md"
AIDER_SESSION_HEADER = re.compile(r"^# aider chat started at (\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})")


def aider_global_files() -> List[Path]:
    home = Path.home()
    return [home / ".aider" / "history.jsonl", home / ".aider.history"]


def aider_history_files(context: HistoryContext) -> List[Path]:
    files = [p for p in aider_global_files() if p.is_file()]
    for project in context.known_paths:
        chat = Path(project) / AIDER_CHAT_FILE
        if chat.is_file():
            files.append(chat)
    return files


def parse_aider_file(path: Path, context: Optional[HistoryContext] = None) -> List[ConversationEntry]:
    context = context or HistoryContext()
    if path.name == AIDER_CHAT_FILE:
        return _parse_aider_markdown(path)
    # Global history carries no cwd or timestamps
    cwd = context.aider_default_path
    ts = file_mtime(path)
    entries = []
    for line in _read_text(path).splitlines():
        if not line.strip():
            continue
        role, content = ROLE_USER, line
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            if data.get("role") != ROLE_USER or not data.get("content"):
                continue
            content = str(data["content"])
        entries.append(ConversationEntry(
            agent=AGENT_AIDER, source_path=str(path), timestamp=ts,
            role=role, content=content, cwd=cwd,
        ))
    return entries


def _parse_aider_markdown(path: Path) -> List[ConversationEntry]:
    """Aider's per-project transcript: '#### ' lines are user prompts."""
    cwd = str(path.parent)
    ts = file_mtime(path)
    entries: List[ConversationEntry] = []
    reply: List[str] = []

    def flush_reply():
        text = "\n".join(reply).strip()
        reply.clear()
        if text:
            entries.append(ConversationEntry(
                agent=AGENT_AIDER, source_path=str(path), timestamp=ts,
                role=ROLE_ASSISTANT, content=text, cwd=cwd,
            ))

    for line in _read_text(path).splitlines():
        header = AIDER_SESSION_HEADER.match(line)
        if header:
            flush_reply()
            ts = parse_timestamp(header.group(1)) or ts
            continue
        if line.startswith("#### "):
            flush_reply()
            entries.append(ConversationEntry(
                agent=AGENT_AIDER, source_path=str(path), timestamp=ts,
                role=ROLE_USER, content=line[5:].strip(), cwd=cwd,
            ))
        elif line.startswith(">"):
            # Tool output and command echoes
            continue
        else:
            reply.append(line)
    flush_reply()
    return entries


# =============================================================================
# Codex CLI
# =============================================================================

CODEX_CONTEXT_PREFIXES = ("<environment_context>", "<user_instructions>")


def codex_sessions_dir() -> Path:
    return Path.home() / ".codex" / "sessions"


def codex_history_files(context: HistoryContext) -> List[Path]:
    return _safe_glob(codex_sessions_dir(), "**/rollout-*.jsonl")


def _codex_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block["text"] for block in content
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        )
    return ""


def parse_codex_file(path: Path, context: Optional[HistoryContext] = None) -> List[ConversationEntry]:
    entries = []
    session_id = ""
    cwd = ""
    fallback_ts = file_mtime(path)
    for record in _iter_jsonl(path):
        payload = record.get("payload") if isinstance(record.get("payload"), dict) else record
        kind = record.get("type")
        if kind == "session_meta" or ("id" in record and "instructions" in record):
            session_id = payload.get("id") or session_id
            cwd = payload.get("cwd") or cwd
            continue
        if payload.get("type") != "message":
            continue
        role = payload.get("role")
        if role not in (ROLE_USER, ROLE_ASSISTANT):
            continue
        text = _codex_text(payload.get("content"))
        if not text.strip() or text.lstrip().startswith(CODEX_CONTEXT_PREFIXES):
            continue
        entries.append(ConversationEntry(
            agent=AGENT_CODEX,
            source_path=str(path),
            timestamp=parse_timestamp(record.get("timestamp")) or fallback_ts,
            role=role,
            content=text,
            session_id=session_id,
            cwd=cwd,
        ))
    return entries


def list_codex_conversations(project_path: str) -> List[ResumeCandidate]:
    candidates = []
    for path in codex_history_files(HistoryContext()):
        try:
            entries = parse_codex_file(path)
        except ParseError as e:
            logger.warning("Skipping Codex session %s: %s", path, e.reason)
            continue
        prompts = [e for e in entries if e.role == ROLE_USER and e.cwd == project_path]
        if not prompts or not prompts[0].session_id:
            continue
        candidates.append(ResumeCandidate(
            session_id=prompts[0].session_id,
            first_prompt=truncate_prompt(prompts[0].content),
            last_prompt=truncate_prompt(prompts[-1].content),
            message_count=len(prompts),
            created_at=prompts[0].timestamp,
            updated_at=entries[-1].timestamp,
            source_path=str(path),
        ))
    candidates.sort(key=lambda c: c.updated_at, reverse=True)
    return candidates


# =============================================================================
# OpenCode
# =============================================================================

def opencode_storage_dir() -> Path:
    return Path.home() / ".local" / "share" / "opencode" / "storage"


def opencode_history_files(context: HistoryContext) -> List[Path]:
    return _safe_glob(opencode_storage_dir() / "session", "*/ses_*.json")


def _opencode_message_text(base: Path, msg_id: str) -> str:
    texts = []
    for part_file in _safe_glob(base / "part" / msg_id, "prt_*.json"):
        try:
            part = json.loads(part_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            continue
        if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
            texts.append(part["text"])
    return "\n".join(texts)


def parse_opencode_file(path: Path, context: Optional[HistoryContext] = None) -> List[ConversationEntry]:
    """Parse one OpenCode session file plus its message and part trees."""
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ParseError(path, "expected a session object")
    base = path.parent.parent.parent
    session_id = data.get("id") or path.stem
    cwd = data.get("directory") or ""
    fallback_ts = parse_timestamp((data.get("time") or {}).get("updated")) or file_mtime(path)
    entries = []
    for msg_file in _safe_glob(base / "message" / session_id, "msg_*.json"):
        try:
            msg = json.loads(msg_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read message file %s: %s", msg_file, e)
            continue
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        if role not in (ROLE_USER, ROLE_ASSISTANT):
            continue
        text = _opencode_message_text(base, msg.get("id", msg_file.stem))
        if not text and role == ROLE_USER:
            # Older storage kept only a title for user messages
            text = ((msg.get("summary") or {}).get("title")) or ""
        if not text.strip():
            continue
        entries.append(ConversationEntry(
            agent=AGENT_OPENCODE,
            source_path=str(path),
            timestamp=parse_timestamp((msg.get("time") or {}).get("created")) or fallback_ts,
            role=role,
            content=text,
            session_id=session_id,
            cwd=cwd,
        ))
    entries.sort(key=lambda e: e.timestamp)
    return entries


def list_opencode_conversations(project_path: str) -> List[ResumeCandidate]:
    candidates = []
    for path in opencode_history_files(HistoryContext()):
        try:
            entries = parse_opencode_file(path)
        except ParseError as e:
            logger.warning("Skipping OpenCode session %s: %s", path, e.reason)
            continue
        prompts = [e for e in entries if e.role == ROLE_USER and e.cwd == project_path]
        if not prompts:
            continue
        candidates.append(ResumeCandidate(
            session_id=prompts[0].session_id,
            first_prompt=truncate_prompt(prompts[0].content),
            last_prompt=truncate_prompt(prompts[-1].content),
            message_count=len(prompts),
            created_at=prompts[0].timestamp,
            updated_at=entries[-1].timestamp,
            source_path=str(path),
        ))
    candidates.sort(key=lambda c: c.updated_at, reverse=True)
    return candidates


# =============================================================================
# Terminal captures
# =============================================================================

def terminal_capture_entries(capture_plain: str, instance_id: str, tab_index: int,
                             cwd: str, captured_at: datetime,
                             source: str) -> List[ConversationEntry]:
    """Turn a terminal tab's scrollback into one searchable system entry."""
    text = capture_plain.strip()
    if not text:
        return []
    return [ConversationEntry(
        agent="terminal",
        source_path=source,
        timestamp=captured_at,
        role=ROLE_SYSTEM,
        content=text,
        cwd=cwd,
        instance_id=instance_id,
        tab_index=tab_index,
    )]
