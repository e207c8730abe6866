"""Adapters — the only code that touches apt, git, HTTP, the shell and the desktop."""
