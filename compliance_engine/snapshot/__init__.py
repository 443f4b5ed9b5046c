"""Recompute, immutable snapshots and their publication."""
