"""
CLI interface for asmgr using Typer.

Running `asmgr` with no command opens the TUI.
"""

# Shared apps and helpers must be imported before the command modules
from ._shared import app, main_callback  # noqa: F401

# Import submodules to register their commands with the Typer apps
from . import sessions  # noqa: F401
from . import projects  # noqa: F401
from . import config  # noqa: F401
from . import tabs  # noqa: F401
from . import groups  # noqa: F401


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
