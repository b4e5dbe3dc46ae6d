"""
TUI action mixins for asmgr.

Each mixin groups related action_* methods; AsmgrApp inherits all of them.
"""

from .navigation import NavigationActionsMixin
from .session import SessionActionsMixin
from .view import ViewActionsMixin

__all__ = [
    "NavigationActionsMixin",
    "SessionActionsMixin",
    "ViewActionsMixin",
]
