"""ccremote: drive Claude Code sessions remotely with human-in-the-loop tool approvals."""

__version__ = "0.3.0"
