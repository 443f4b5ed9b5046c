"""Auth dependencies — JWT validation, role-tier enforcement.

Tokens are issued by the external identity provider; this module only
verifies them and turns their claims into a ``Principal``.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from compliance_engine.auth.schemas import Principal
from compliance_engine.common.constants import ROLE_TIER_RANK, RoleTier
from compliance_engine.common.exceptions import ForbiddenException
from compliance_engine.config import settings


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_principal(request: Request) -> Principal:
    """Validate the JWT and return the caller's principal."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        role_tier = RoleTier(payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role claim.")

    subject = payload.get("sub")
    home_node = payload.get("home_node")
    if not subject or not home_node:
        raise HTTPException(status_code=401, detail="Token is missing required claims.")

    principal = Principal(
        principal_id=str(subject),
        role_tier=role_tier,
        home_node_id=str(home_node),
    )
    request.state.principal = principal
    return principal


# ── Tier-based dependency ───────────────────────────────────────────

def require_tier(minimum: RoleTier) -> Callable:
    """Return a FastAPI dependency that requires at least *minimum* tier."""

    async def _check(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if ROLE_TIER_RANK[principal.role_tier] < ROLE_TIER_RANK[minimum]:
            raise ForbiddenException(
                detail=f"Role tier '{principal.role_tier.value}' is not permitted. "
                f"Required: '{minimum.value}'.",
            )
        return principal

    return _check
