"""Scope resolver — the org subtrees a caller may query.

The grant is derived from the caller's signed role tier and home node. The
``view_as`` toggle can only pick a tier at or below the claimed one, and a
requested drill-down node outside the grant is rejected rather than
narrowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from compliance_engine.auth.schemas import Principal
from compliance_engine.common.constants import (
    ROLE_TIER_RANK,
    ROLE_TIER_ROOT_LEVEL,
    RoleTier,
)
from compliance_engine.common.exceptions import ScopeViolation
from compliance_engine.hierarchy.index import OrgHierarchyIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeGrant:
    """Per-request authorization; never persisted."""

    principal_id: str
    role_tier: RoleTier
    roots: tuple[str, ...]

    @property
    def is_forest(self) -> bool:
        return self.role_tier == RoleTier.organization


class ScopeResolver:
    """Resolves grants against one snapshot's hierarchy."""

    def __init__(self, index: OrgHierarchyIndex) -> None:
        self.index = index

    def resolve(
        self,
        principal: Principal,
        view_as: Optional[RoleTier] = None,
    ) -> ScopeGrant:
        tier = principal.role_tier
        if view_as is not None:
            if ROLE_TIER_RANK[view_as] > ROLE_TIER_RANK[tier]:
                logger.warning(
                    "Scope violation: %s (%s) asked to view as %s",
                    principal.principal_id, tier.value, view_as.value,
                )
                raise ScopeViolation(
                    f"Role tier '{tier.value}' cannot view as '{view_as.value}'."
                )
            tier = view_as

        if tier == RoleTier.organization:
            return ScopeGrant(principal.principal_id, tier, self.index.roots)

        home = principal.home_node_id
        if home not in self.index:
            logger.warning(
                "Scope violation: %s home node %s not in hierarchy",
                principal.principal_id, home,
            )
            raise ScopeViolation("Your home node is not part of the current hierarchy.")

        root = self.index.nearest_ancestor_at_level(home, ROLE_TIER_ROOT_LEVEL[tier])
        if root is None:
            logger.warning(
                "Scope violation: %s home node %s has no %s ancestor",
                principal.principal_id, home, ROLE_TIER_ROOT_LEVEL[tier].value,
            )
            raise ScopeViolation(
                f"No {ROLE_TIER_ROOT_LEVEL[tier].value} node encloses your home node."
            )
        return ScopeGrant(principal.principal_id, tier, (root,))

    def authorize(
        self,
        grant: ScopeGrant,
        requested_node: Optional[str] = None,
    ) -> tuple[str, ...]:
        """Roots the query may traverse: the grant itself or one node inside it."""
        if requested_node is None:
            return grant.roots
        if any(self.index.is_within(requested_node, root) for root in grant.roots):
            return (requested_node,)
        logger.warning(
            "Scope violation: %s (%s) requested node %s outside grant %s",
            grant.principal_id, grant.role_tier.value, requested_node, list(grant.roots),
        )
        raise ScopeViolation()
