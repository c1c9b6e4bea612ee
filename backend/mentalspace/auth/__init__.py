"""AuthN/AuthZ for the MentalSpace API.

Credential scheme
-----------------
``Authorization: Bearer <jwt>``, an HS256-signed token issued by
``POST /api/auth/login``.  Claims: ``sub`` (user id), ``username``, ``role``,
``jti`` (revocation id).

Role hierarchy (checked with ``has_minimum_role_level``)
-------------------------------------------------------
``administrator`` > ``practice_administrator`` > ``admin_clinician`` >
``supervisor`` > ``clinician`` > ``intern`` > ``scheduler`` = ``biller`` >
``user``
"""

from mentalspace.auth.deps import AuthContext, Principal, get_auth_context
from mentalspace.auth.roles import (
    ROLE_HIERARCHY,
    Role,
    has_minimum_role,
    has_minimum_role_level,
    has_role,
    is_authenticated,
    is_owner_or_has_role,
    role_level,
)

__all__ = [
    "AuthContext",
    "Principal",
    "ROLE_HIERARCHY",
    "Role",
    "get_auth_context",
    "has_minimum_role",
    "has_minimum_role_level",
    "has_role",
    "is_authenticated",
    "is_owner_or_has_role",
    "role_level",
]
