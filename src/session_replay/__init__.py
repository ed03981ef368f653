"""Interactive terminal viewer for Copilot CLI and Claude Code session transcripts."""

__version__ = "0.3.0"
