"""Ingestion tables, row validation and snapshot inputs."""
