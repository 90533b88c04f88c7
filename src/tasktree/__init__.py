"""Tasktree - shared task hierarchy, blocking and queue store for agents."""

__version__ = "0.1.0"
