"""Command-line interface for Tasktree."""
