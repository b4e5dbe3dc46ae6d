"""
TUI Widget components for asmgr.

This package contains the individual widget classes used by tui.py.
"""

from .preview_pane import PreviewPane
from .session_list import SessionList
from .search_modal import SearchModal
from .new_session_modal import NewSessionModal
from .prompt_modal import PromptModal

__all__ = [
    "PreviewPane",
    "SessionList",
    "SearchModal",
    "NewSessionModal",
    "PromptModal",
]
