"""
Explicit tenant context.

The organization is read once at the HTTP edge and from then on travels as a
``TenantContext`` argument into every service call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .exceptions import AuthenticationRequired, NotFound, OrganizationContextMissing
from .identity import get_identity_provider
from .models import Organization
from .permissions import Role, RoleResolver, can_manage_organization, can_review

logger = logging.getLogger(__name__)

ORGANIZATION_HEADER = "HTTP_X_ORGANIZATION_ID"
ORGANIZATION_QUERY_PARAM = "organization"


@dataclass(frozen=True)
class TenantContext:
    user_id: int
    organization_id: int
    role: Role

    @property
    def can_review(self) -> bool:
        return can_review(self.role)

    @property
    def can_manage_organization(self) -> bool:
        return can_manage_organization(self.role)


def _requested_organization(request) -> str | None:
    raw = request.META.get(ORGANIZATION_HEADER)
    if not raw:
        query = getattr(request, "query_params", None) or request.GET
        raw = query.get(ORGANIZATION_QUERY_PARAM)
    raw = (raw or "").strip()
    return raw or None


def _lookup_organization(identifier: str) -> Organization | None:
    # Accept either the numeric id or the subdomain slug.
    if identifier.isdigit():
        org = Organization.objects.filter(pk=int(identifier)).first()
        if org is not None:
            return org
    return Organization.objects.filter(subdomain=identifier.lower()).first()


def _is_member(provider, user_id, organization_id) -> bool:
    # An unreachable provider is not a "no": role resolution falls back to
    # profile metadata and defaults to the lowest role.
    try:
        return provider.is_member(user_id, organization_id)
    except Exception as exc:
        logger.warning(
            "[tenancy] membership check failed for user=%s org=%s: %s; deferring to role resolution",
            user_id,
            organization_id,
            exc,
        )
        return True


def tenant_context_from_request(request, provider=None) -> TenantContext:
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        raise AuthenticationRequired()

    identifier = _requested_organization(request)
    if identifier is None:
        raise OrganizationContextMissing()

    provider = provider or get_identity_provider()
    organization = _lookup_organization(identifier)
    if organization is None or not _is_member(provider, user.pk, organization.pk):
        logger.debug("[tenancy] user=%s has no access to organization %r", user.pk, identifier)
        raise NotFound("Organization not found")

    role = RoleResolver(provider, logger=logger).resolve(user.pk, organization.pk)
    return TenantContext(user_id=user.pk, organization_id=organization.pk, role=role)
