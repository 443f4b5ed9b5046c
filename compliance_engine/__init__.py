"""Compliance engine — attendance-compliance aggregation with privacy suppression."""
