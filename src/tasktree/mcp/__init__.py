"""MCP tool surface for Tasktree."""
