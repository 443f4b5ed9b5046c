"""Scope resolution: which org subtrees a caller may query."""
