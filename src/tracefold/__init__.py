"""Reconstruct agent-chat views from flat event streams."""

__version__ = "0.3.0"
