"""
Role-Based Access Control for expense review.

Roles are never stored locally: each request derives one ``Role`` from the
identity provider's raw organization-membership role string. The mapping is a
pure, total function and every failure path resolves to the least-privileged
role (``Role.SUBMITTER``).

Provider role strings seen in the wild come from two schemes:
- legacy four-role scheme: user, chef, admin, superadmin
- five-role scheme: association, member, reviewer, admin, superadmin
The five-role scheme is authoritative. ``chef`` is still accepted as a reviewer
alias, and ``association`` is treated as a basic submitter (the legacy table
mapped it to ``chef``).
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from rest_framework.permissions import BasePermission

if TYPE_CHECKING:
    from .identity import IdentityProvider


# ─────────────────────────────────────────────────────────────────────────────
#    Role Enum
# ─────────────────────────────────────────────────────────────────────────────

class Role(str, Enum):
    """
    Local roles, lowest to highest privilege.

    - SUBMITTER: creates submissions and uploads evidence
    - REVIEWER: approves/rejects submissions and comments on any of them
    - ADMIN: reviewer + organization management and reports
    - SUPERADMIN: everything an admin can do
    """
    SUBMITTER = "submitter"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


ROLE_ORDER: dict[Role, int] = {
    Role.SUBMITTER: 1,
    Role.REVIEWER: 2,
    Role.ADMIN: 3,
    Role.SUPERADMIN: 4,
}

DEFAULT_ROLE = Role.SUBMITTER

REVIEW_ROLES = frozenset({Role.REVIEWER, Role.ADMIN, Role.SUPERADMIN})
MANAGE_ROLES = frozenset({Role.ADMIN, Role.SUPERADMIN})


# ─────────────────────────────────────────────────────────────────────────────
#    Provider Role Mapping
# ─────────────────────────────────────────────────────────────────────────────

PROVIDER_ROLE_MAP: dict[str, Role] = {
    # Five-role scheme
    "association": Role.SUBMITTER,
    "member": Role.SUBMITTER,
    "reviewer": Role.REVIEWER,
    "admin": Role.ADMIN,
    "superadmin": Role.SUPERADMIN,
    # Provider defaults and legacy names
    "basic_member": Role.SUBMITTER,
    "user": Role.SUBMITTER,
    "chef": Role.REVIEWER,
}


def map_provider_role(raw_role: Optional[str]) -> Role:
    """Map a provider role string to a local role. Unknown input maps to SUBMITTER."""
    if not raw_role or not isinstance(raw_role, str):
        return DEFAULT_ROLE
    key = raw_role.strip().lower()
    if key.startswith("org:"):
        key = key[len("org:"):]
    return PROVIDER_ROLE_MAP.get(key, DEFAULT_ROLE)


# ─────────────────────────────────────────────────────────────────────────────
#    Predicates
# ─────────────────────────────────────────────────────────────────────────────

def role_at_least(role: Role, minimum: Role) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER[minimum]


def can_review(role: Role) -> bool:
    return role in REVIEW_ROLES


def can_manage_organization(role: Role) -> bool:
    return role in MANAGE_ROLES


@dataclass(frozen=True)
class PermissionSummary:
    role: Role
    can_review: bool
    can_manage_organization: bool
    is_admin: bool
    is_superadmin: bool

    def as_dict(self) -> dict:
        data = asdict(self)
        data["role"] = self.role.value
        return data


def permissions_for(role: Role) -> PermissionSummary:
    return PermissionSummary(
        role=role,
        can_review=can_review(role),
        can_manage_organization=can_manage_organization(role),
        is_admin=role in MANAGE_ROLES,
        is_superadmin=role == Role.SUPERADMIN,
    )


# ─────────────────────────────────────────────────────────────────────────────
#    Resolver
# ─────────────────────────────────────────────────────────────────────────────

class RoleResolver:
    """
    Resolve the local role of an identity inside an organization.

    All provider I/O goes through ``provider``; the resolver only decides.
    """

    def __init__(self, provider: "IdentityProvider", logger: logging.Logger | None = None):
        self.provider = provider
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, user_id, organization_id) -> Role:
        if organization_id is None:
            self.logger.debug("[rbac] no organization context for user=%s; defaulting to %s", user_id, DEFAULT_ROLE.value)
            return DEFAULT_ROLE

        try:
            raw_role = self.provider.get_membership_role(user_id, organization_id)
        except Exception as exc:
            self.logger.warning(
                "[rbac] membership lookup failed for user=%s org=%s: %s; using profile metadata",
                user_id,
                organization_id,
                exc,
            )
            return self._resolve_from_profile(user_id)

        if raw_role is None:
            self.logger.debug("[rbac] no membership for user=%s org=%s", user_id, organization_id)
            return DEFAULT_ROLE

        role = map_provider_role(raw_role)
        self.logger.debug(
            "[rbac] resolved role=%s for user=%s org=%s (provider role %r)",
            role.value,
            user_id,
            organization_id,
            raw_role,
        )
        return role

    def _resolve_from_profile(self, user_id) -> Role:
        try:
            raw_role = self.provider.get_profile_role(user_id)
        except Exception as exc:
            self.logger.warning("[rbac] profile role lookup failed for user=%s: %s", user_id, exc)
            return DEFAULT_ROLE
        return map_provider_role(raw_role)


# ─────────────────────────────────────────────────────────────────────────────
#    DRF integration
# ─────────────────────────────────────────────────────────────────────────────

class HasMinimumRole(BasePermission):
    """
    Checks ``request.tenant.role`` against the view's ``required_role``.

    Views without a ``required_role`` are open to every organization member.
    The tenant context is attached by ``core.views_base.TenantAPIView``.
    """

    message = "Insufficient permissions"

    def has_permission(self, request, view) -> bool:
        required = getattr(view, "required_role", None)
        if required is None:
            return True
        tenant = getattr(request, "tenant", None)
        if tenant is None:
            return False
        return role_at_least(tenant.role, required)
