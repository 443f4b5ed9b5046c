"""Compliance query API: router, service and response schemas."""
