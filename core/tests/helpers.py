import pymupdf
from django.contrib.auth import get_user_model

from core.models import Organization, OrganizationMembership, Submission
from core.permissions import Role
from core.tenancy import TenantContext

User = get_user_model()

IN_MEMORY_STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.InMemoryStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

# 1x1 transparent PNG
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


def make_user(username: str, **extra):
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass123",
        **extra,
    )


def make_org(name: str = "Association Kifndirou", subdomain: str = "kifndirou") -> Organization:
    return Organization.objects.create(name=name, subdomain=subdomain)


def add_member(org: Organization, user, provider_role: str = "org:member") -> OrganizationMembership:
    return OrganizationMembership.objects.create(organization=org, user=user, provider_role=provider_role)


def ctx_for(user, org: Organization, role: Role = Role.SUBMITTER) -> TenantContext:
    return TenantContext(user_id=user.pk, organization_id=org.pk, role=role)


def make_submission(org, user, status=Submission.Status.DRAFT, **fields) -> Submission:
    fields.setdefault("expense_type", "fournitures")
    return Submission.objects.create(organization=org, created_by=user, status=status, **fields)


def make_pdf(text: str = "Facture 2024-117\nTotal TTC 120.00 EUR") -> bytes:
    doc = pymupdf.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data
