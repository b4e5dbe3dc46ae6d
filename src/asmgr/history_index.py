"""
Cross-agent conversation index.

build() walks every registered profile's history files, parses them into
ConversationEntry records, and keeps them in memory. Files are re-parsed
only when their mtime or size changes, so reopening global search is cheap.

search() is a plain case-insensitive substring scan; tens of thousands of
entries scan in well under the budget a keypress allows. Each hit is
resolved to the managed instance (and tab) it most likely belongs to.
"""

import os
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .agent_profiles import AgentProfile, all_profiles, get_profile
from .exceptions import ConfigError, ParseError
from .history_parsers import (
    ConversationEntry,
    ConversationMessage,
    HistoryContext,
    aider_global_files,
)
from .logging_config import get_logger
from .models import InstanceRecord
from .status_constants import AGENT_AIDER, AGENT_TERMINAL

logger = get_logger("history_index")

SNIPPET_BEFORE = 30
SNIPPET_AFTER = 70
ROLE_PREFIXES = ("User: ", "Gemini: ", "Assistant: ", "Claude: ", "Aider: ")


@dataclass(frozen=True)
class SearchMatch:
    entry: ConversationEntry
    instance_id: Optional[str] = None
    tab_index: Optional[int] = None


def normalize_path(path: str) -> str:
    if not path:
        return ""
    return os.path.normpath(os.path.expanduser(path))


def _collapse(text: str) -> str:
    return " ".join(text.split())


def extract_snippet(content: str, query: str) -> str:
    """Context window around the first match, whitespace collapsed."""
    idx = content.lower().find(query.lower()) if query else -1
    if idx < 0:
        snippet = _collapse(content)
        return snippet[:100] + "..." if len(snippet) > 100 else snippet
    start = max(0, idx - SNIPPET_BEFORE)
    end = min(len(content), idx + len(query) + SNIPPET_AFTER)
    snippet = _collapse(content[start:end])
    for prefix in ROLE_PREFIXES:
        snippet = snippet.replace(prefix, "")
    snippet = _collapse(snippet)
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet += "..."
    return snippet


def history_context(instances: Iterable[InstanceRecord]) -> HistoryContext:
    instances = list(instances)
    paths = list(dict.fromkeys(i.path for i in instances if i.path))
    aider_path = next((i.path for i in instances if i.agent == AGENT_AIDER and i.path), "")
    return HistoryContext(known_paths=paths, aider_default_path=aider_path)


def resolve_entry(entry: ConversationEntry,
                  instances: Iterable[InstanceRecord]) -> Tuple[Optional[str], Optional[int]]:
    """Find the (instance id, tab index) an entry belongs to.

    Candidates are every window running the entry's agent. A resume-id
    match wins (scoped to the tab when it is not the primary window);
    otherwise a working-directory match on the primary window, then on any
    tab, picks the instance.
    """
    if entry.instance_id:
        return entry.instance_id, entry.tab_index

    units = []
    for inst in instances:
        for window in inst.windows:
            if window.agent == entry.agent:
                units.append((inst, window))
    if not units:
        return None, None

    entry_path = normalize_path(entry.cwd)

    if entry.session_id:
        by_resume = [(i, w) for i, w in units if w.resume_id and w.resume_id == entry.session_id]
        if by_resume:
            same_path = [(i, w) for i, w in by_resume if normalize_path(i.path) == entry_path]
            inst, window = (same_path or by_resume)[0]
            scoped = len(by_resume) == 1 and window.index != 0
            return inst.id, window.index if scoped else None

    if entry_path:
        by_path = [(i, w) for i, w in units if normalize_path(i.path) == entry_path]
        primary = [(i, w) for i, w in by_path if w.index == 0]
        if primary:
            return primary[0][0].id, None
        if by_path:
            return by_path[0][0].id, None
    return None, None


class HistoryIndex:
    """In-memory searchable index of every agent's conversations.

    Thread-safe: build() runs on a worker while the UI may call search().
    """

    def __init__(self, profiles: Optional[List[AgentProfile]] = None):
        self._profiles = profiles
        self._lock = threading.Lock()
        self._entries: List[ConversationEntry] = []
        self._instances: List[InstanceRecord] = []
        self._loaded = False
        # path -> (mtime, size, entries)
        self._file_cache: Dict[str, Tuple[float, int, List[ConversationEntry]]] = {}

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def entries(self) -> List[ConversationEntry]:
        with self._lock:
            return list(self._entries)

    def _parse_cached(self, profile: AgentProfile, path: Path,
                      context: HistoryContext) -> List[ConversationEntry]:
        try:
            stat = path.stat()
        except OSError as e:
            logger.warning("Skipping history file %s: %s", path, e)
            return []
        key = str(path)
        cached = self._file_cache.get(key)
        if cached and cached[0] == stat.st_mtime and cached[1] == stat.st_size:
            return cached[2]
        try:
            parsed = profile.parse_history(path, context)
        except ParseError as e:
            logger.warning("Skipping history file %s: %s", path, e.reason)
            parsed = []
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Skipping history file %s: %s", path, e)
            parsed = []
        self._file_cache[key] = (stat.st_mtime, stat.st_size, parsed)
        return parsed

    def build(self, instances: Iterable[InstanceRecord],
              terminal_entries: Optional[List[ConversationEntry]] = None) -> int:
        """(Re)load every history source. Returns the number of entries."""
        instances = list(instances)
        context = history_context(instances)
        collected: List[ConversationEntry] = []
        seen_files = set()
        profiles = self._profiles if self._profiles is not None else all_profiles()
        for profile in profiles:
            if not profile.has_history:
                continue
            try:
                files = profile.history_files(context)
            except OSError as e:
                logger.warning("Cannot list %s history: %s", profile.display_name, e)
                continue
            for path in files:
                seen_files.add(str(path))
                collected.extend(self._parse_cached(profile, path, context))
        collected.extend(terminal_entries or [])
        # Forget files that disappeared
        for key in list(self._file_cache):
            if key not in seen_files:
                del self._file_cache[key]
        collected.sort(key=lambda e: e.timestamp, reverse=True)
        with self._lock:
            self._entries = collected
            self._instances = instances
            self._loaded = True
        logger.info("History index built: %d entries from %d files", len(collected), len(seen_files))
        return len(collected)

    def set_instances(self, instances: Iterable[InstanceRecord]) -> None:
        with self._lock:
            self._instances = list(instances)

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchMatch]:
        """Entries whose content contains query (case-folded), newest first."""
        needle = query.casefold()
        with self._lock:
            entries = self._entries
            instances = self._instances
        results = []
        for entry in entries:
            if needle not in entry.content.casefold():
                continue
            instance_id, tab_index = resolve_entry(entry, instances)
            results.append(SearchMatch(
                entry=replace(entry, snippet=extract_snippet(entry.content, query)),
                instance_id=instance_id,
                tab_index=tab_index,
            ))
            if limit is not None and len(results) >= limit:
                break
        return results

    def load_conversation(self, entry: ConversationEntry) -> List[ConversationMessage]:
        """Ordered messages of the conversation an entry came from.

        Sources that keep only isolated prompts (terminal captures, Aider's
        global history) yield the entry alone.
        """
        single = [ConversationMessage(entry.role, entry.content, entry.timestamp)]
        if entry.agent == AGENT_TERMINAL:
            return single
        if entry.agent == AGENT_AIDER and Path(entry.source_path) in aider_global_files():
            return single
        try:
            profile = get_profile(entry.agent)
        except ConfigError:
            return single
        path = Path(entry.source_path)
        with self._lock:
            context = history_context(self._instances)
        try:
            parsed = profile.parse_history(path, context)
        except ParseError as e:
            logger.warning("Cannot load conversation %s: %s", path, e.reason)
            return single
        if entry.session_id:
            parsed = [e for e in parsed if e.session_id == entry.session_id] or parsed
        if not parsed:
            return single
        return [ConversationMessage(e.role, e.content, e.timestamp) for e in parsed]
