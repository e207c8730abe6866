"""Nexus Updater — install and update ham radio applications on a Nexus Pi image."""

__version__ = "2.0.0"
