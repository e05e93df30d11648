from fastapi import Depends

from api.middleware.auth import get_current_profile
from api.models.profile import Profile
from api.services.errors import AuthorizationGap


def has_any_role(profile: Profile, roles) -> bool:
    """A profile matches on its functional role or its system role."""
    return profile.role in roles or profile.system_role in roles


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/{payment_id}/approve")
        async def approve(
            _auth: None = Depends(require_roles("admin", "super_admin")),
        ):

    Services re-check their own finer rules (e.g. a clinic admin only
    reviews payments of that clinic); this is the coarse first gate.
    """
    async def check_role(profile: Profile = Depends(get_current_profile)):
        if not has_any_role(profile, allowed_roles):
            raise AuthorizationGap(
                f"Role '{profile.role}' cannot perform this action. "
                f"Required: {', '.join(allowed_roles)}"
            )
        return None

    return check_role
