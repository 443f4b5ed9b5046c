"""Auth Pydantic v2 schemas — the verified caller identity."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from compliance_engine.common.constants import RoleTier


class Principal(BaseModel):
    """Caller identity taken from a verified access token.

    ``role_tier`` and ``home_node_id`` come from signed claims only; nothing
    in a request body can change them.
    """

    model_config = ConfigDict(frozen=True)

    principal_id: str = Field(..., description="Subject claim of the access token")
    role_tier: RoleTier
    home_node_id: str = Field(..., description="Org node the caller is attached to")
