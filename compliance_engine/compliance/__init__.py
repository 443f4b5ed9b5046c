"""Calendars, eligibility, presence normalization and compliance ratios."""
