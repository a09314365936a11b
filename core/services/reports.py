"""Organization-level reporting for administrators."""
from __future__ import annotations

import csv
import io
from decimal import Decimal

from django.db.models import BigIntegerField, Count, DecimalField, Exists, OuterRef, Q, Subquery, Sum, Value
from django.db.models.functions import Coalesce

from ..exceptions import PermissionDenied
from ..identity import lookup_users
from ..models import Comment, EvidenceFile, OrganizationMembership, Submission
from ..permissions import map_provider_role
from ..tenancy import TenantContext
from .submissions import tenant_submissions

Status = Submission.Status

EXPORT_COLUMNS = [
    "ID",
    "Type",
    "Title",
    "Amount",
    "Status",
    "Spent Date",
    "Created Date",
    "File Count",
    "Total File Size (bytes)",
    "Has Comments",
    "Last Decision",
]

_ZERO = Value(Decimal("0.00"), output_field=DecimalField(max_digits=14, decimal_places=2))


def _require_admin(ctx: TenantContext) -> None:
    if not ctx.can_manage_organization:
        raise PermissionDenied()


def submission_stats(ctx: TenantContext) -> dict:
    _require_admin(ctx)
    pending = Q(status__in=[Status.SUBMITTED, Status.IN_REVIEW])
    totals = tenant_submissions(ctx).aggregate(
        total=Count("id"),
        approved=Count("id", filter=Q(status=Status.APPROVED)),
        rejected=Count("id", filter=Q(status=Status.REJECTED)),
        pending=Count("id", filter=pending),
        draft=Count("id", filter=Q(status=Status.DRAFT)),
        total_amount=Coalesce(Sum("amount"), _ZERO),
        approved_amount=Coalesce(Sum("amount", filter=Q(status=Status.APPROVED)), _ZERO),
    )
    totals["total_amount"] = str(totals["total_amount"])
    totals["approved_amount"] = str(totals["approved_amount"])
    return totals


def status_breakdown(ctx: TenantContext, stats: dict | None = None) -> list[dict]:
    stats = stats or submission_stats(ctx)
    total = stats["total"]
    if not total:
        return []
    rows = []
    for label, key in (("APPROVED", "approved"), ("REJECTED", "rejected"), ("PENDING", "pending"), ("DRAFT", "draft")):
        rows.append({
            "status": label,
            "count": stats[key],
            "percentage": round(stats[key] * 100 / total, 2),
        })
    return rows


def recent_activity(ctx: TenantContext, limit: int = 10) -> list[dict]:
    _require_admin(ctx)
    rows = tenant_submissions(ctx).order_by("-created_at").values(
        "id", "title", "expense_type", "status", "amount", "created_at", "updated_at"
    )[:limit]
    return [
        {
            "id": str(row["id"]),
            "title": row["title"] or "Untitled",
            "expense_type": row["expense_type"],
            "status": row["status"],
            "amount": str(row["amount"]) if row["amount"] is not None else None,
            "created_at": row["created_at"].isoformat(),
            "updated_at": row["updated_at"].isoformat(),
        }
        for row in rows
    ]


def dashboard(ctx: TenantContext) -> dict:
    stats = submission_stats(ctx)
    return {
        "stats": stats,
        "status_breakdown": status_breakdown(ctx, stats),
        "recent_activity": recent_activity(ctx),
    }


def _export_rows(ctx: TenantContext):
    file_totals = (
        EvidenceFile.objects.filter(submission=OuterRef("pk"))
        .order_by()
        .values("submission")
        .annotate(total=Sum("size"))
        .values("total")
    )
    last_decision = (
        Comment.objects.filter(submission=OuterRef("pk"))
        .order_by("-created_at")
        .values("decision")[:1]
    )
    return (
        tenant_submissions(ctx)
        .annotate(
            file_count=Count("files", distinct=True),
            total_file_size=Coalesce(Subquery(file_totals), 0, output_field=BigIntegerField()),
            has_comments=Exists(Comment.objects.filter(submission=OuterRef("pk"))),
            last_decision=Subquery(last_decision),
        )
        .order_by("-created_at")
    )


def export_submissions_csv(ctx: TenantContext) -> str:
    _require_admin(ctx)
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for submission in _export_rows(ctx):
        writer.writerow([
            str(submission.pk),
            submission.expense_type,
            submission.title or "",
            str(submission.amount) if submission.amount is not None else "",
            submission.status,
            submission.spent_at.isoformat() if submission.spent_at else "",
            submission.created_at.date().isoformat(),
            submission.file_count,
            submission.total_file_size,
            "Yes" if submission.has_comments else "No",
            submission.last_decision or "",
        ])
    return buffer.getvalue()


def list_members(ctx: TenantContext) -> list[dict]:
    _require_admin(ctx)
    memberships = list(
        OrganizationMembership.objects.filter(organization_id=ctx.organization_id, is_active=True).order_by("created_at")
    )
    users = lookup_users(m.user_id for m in memberships)
    members = []
    for membership in memberships:
        info = users[membership.user_id]
        entry = info.as_dict()
        entry["provider_role"] = membership.provider_role
        entry["role"] = map_provider_role(membership.provider_role).value
        entry["joined_at"] = membership.created_at.isoformat()
        members.append(entry)
    return members
