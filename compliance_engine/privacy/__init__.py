"""Privacy layer — minimum-group-size suppression and anonymized labels."""

from compliance_engine.privacy.anonymization import AnonymizedLabel, assign_labels
from compliance_engine.privacy.suppression import (
    FOREST,
    GroupMetric,
    PrivacySuppressionFilter,
    SuppressedMetric,
)

__all__ = [
    "AnonymizedLabel",
    "assign_labels",
    "FOREST",
    "GroupMetric",
    "PrivacySuppressionFilter",
    "SuppressedMetric",
]
