"""Bearer-token verification and role-tier principals."""
