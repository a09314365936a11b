"""
Identity and organization-membership source.

The rest of the app only talks to an ``IdentityProvider``. The database-backed
provider reads the membership mirror tables; a hosted provider can be swapped in
without touching role resolution or the review workflow.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from django.contrib.auth import get_user_model

from .models import OrganizationMembership, UserProfile

logger = logging.getLogger(__name__)

UNKNOWN_USER_EMAIL = "Unknown User"


@dataclass(frozen=True)
class UserInfo:
    id: int | None
    email: str
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.email

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
        }


class IdentityProvider(Protocol):
    def get_membership_role(self, user_id, organization_id) -> str | None:
        """Raw provider role of ``user_id`` inside ``organization_id``, or None without membership."""

    def get_profile_role(self, user_id) -> str | None:
        """Role recorded in the identity's own profile metadata, if any."""

    def is_member(self, user_id, organization_id) -> bool:
        ...

    def get_users_info(self, user_ids: Iterable) -> dict:
        """Display info keyed by user id. Unknown ids get a placeholder."""


class DatabaseIdentityProvider:
    def get_membership_role(self, user_id, organization_id) -> str | None:
        membership = (
            OrganizationMembership.objects.filter(
                user_id=user_id,
                organization_id=organization_id,
                is_active=True,
            )
            .only("provider_role")
            .first()
        )
        if membership is None:
            return None
        return membership.provider_role

    def get_profile_role(self, user_id) -> str | None:
        profile = UserProfile.objects.filter(user_id=user_id).only("metadata").first()
        if profile is None or not isinstance(profile.metadata, dict):
            return None
        role = profile.metadata.get("role")
        return role if isinstance(role, str) else None

    def is_member(self, user_id, organization_id) -> bool:
        return OrganizationMembership.objects.filter(
            user_id=user_id,
            organization_id=organization_id,
            is_active=True,
        ).exists()

    def get_users_info(self, user_ids: Iterable) -> dict:
        ids = {uid for uid in user_ids if uid is not None}
        if not ids:
            return {}
        User = get_user_model()
        users = User.objects.filter(pk__in=ids).only("id", "email", "first_name", "last_name")
        info = {
            user.pk: UserInfo(
                id=user.pk,
                email=user.email or UNKNOWN_USER_EMAIL,
                first_name=user.first_name or "",
                last_name=user.last_name or "",
            )
            for user in users
        }
        for uid in ids - set(info):
            info[uid] = UserInfo(id=uid, email=UNKNOWN_USER_EMAIL)
        return info


_default_provider: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    global _default_provider
    if _default_provider is None:
        _default_provider = DatabaseIdentityProvider()
    return _default_provider


def lookup_users(user_ids: Iterable, provider: IdentityProvider | None = None) -> dict:
    """Display info for enrichment; falls back to placeholders when the provider fails."""
    ids = {uid for uid in user_ids if uid is not None}
    provider = provider or get_identity_provider()
    try:
        return provider.get_users_info(ids)
    except Exception as exc:
        logger.warning("[identity] user lookup failed for %s user(s): %s", len(ids), exc)
        return {uid: UserInfo(id=uid, email=UNKNOWN_USER_EMAIL) for uid in ids}
