"""ShellPilot - a terminal coding agent with guarded shell access."""

__version__ = "0.1.0"

from shellpilot.config import Config
from shellpilot.session import ChatSession

__all__ = ["ChatSession", "Config", "__version__"]
