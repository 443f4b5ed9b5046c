"""Common module — shared enums, exceptions and rate limiting."""

from compliance_engine.common.constants import (
    ComplianceTier,
    Dimension,
    Granularity,
    OrgLevel,
    QueryOutcome,
    RoleTier,
)
from compliance_engine.common.exceptions import (
    AppException,
    DataIntegrityError,
    ForbiddenException,
    InvalidQuery,
    InvalidWindow,
    NotFoundException,
    ScopeViolation,
    StaleSnapshotTimeout,
    UnknownDimension,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "ComplianceTier",
    "Dimension",
    "Granularity",
    "OrgLevel",
    "QueryOutcome",
    "RoleTier",
    # Exceptions
    "AppException",
    "DataIntegrityError",
    "ForbiddenException",
    "InvalidQuery",
    "InvalidWindow",
    "NotFoundException",
    "ScopeViolation",
    "StaleSnapshotTimeout",
    "UnknownDimension",
    "register_exception_handlers",
]
