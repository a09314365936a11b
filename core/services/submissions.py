from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Count, Prefetch
from django.utils import timezone

from ..exceptions import NotFound, PermissionDenied, ValidationError
from ..identity import lookup_users
from ..models import Comment, Submission
from ..submission_states import ensure_transition
from ..tenancy import TenantContext

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

EDITABLE_FIELDS = ("expense_type", "title", "amount", "spent_at")


@dataclass
class Page:
    items: list
    total: int
    limit: int
    offset: int
    users: dict = field(default_factory=dict)

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def pagination(self) -> dict:
        return {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
        }


@dataclass
class SubmissionDetail:
    submission: Submission
    users: dict


# --- Lookups ---


def tenant_submissions(ctx: TenantContext):
    return Submission.objects.filter(organization_id=ctx.organization_id)


def with_history(qs):
    return qs.select_related("created_by").prefetch_related(
        "files",
        Prefetch("comments", queryset=Comment.objects.select_related("author").order_by("created_at")),
    )


def get_submission_for_tenant(ctx: TenantContext, submission_id, *, for_update: bool = False) -> Submission:
    """Submission in the caller's organization; anything else is NotFound."""
    qs = tenant_submissions(ctx)
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=submission_id)
    except (Submission.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Submission not found")


def users_for(submissions) -> dict:
    ids = set()
    for submission in submissions:
        ids.add(submission.created_by_id)
        ids.update(comment.author_id for comment in submission.comments.all())
    return lookup_users(ids)


def load_detail(ctx: TenantContext, submission_id) -> SubmissionDetail:
    submission = with_history(tenant_submissions(ctx)).filter(pk=submission_id).first()
    if submission is None:
        raise NotFound("Submission not found")
    return SubmissionDetail(submission=submission, users=users_for([submission]))


def clamp_pagination(limit, offset) -> tuple[int, int]:
    try:
        limit = int(limit) if limit not in (None, "") else DEFAULT_PAGE_SIZE
        offset = int(offset) if offset not in (None, "") else 0
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")
    return min(limit, MAX_PAGE_SIZE), offset


# --- Field validation ---


def _clean_expense_type(value) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError("Expense type is required")
    return text[:100]


def _clean_amount(value):
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Amount must be zero or positive")
    if amount.as_tuple().exponent < -2:
        raise ValidationError("Amount can have at most 2 decimal places")
    return amount


def _clean_title(value):
    if value is None:
        return None
    text = str(value).strip()
    return text[:255] or None


# --- Operations ---


def create_submission(ctx: TenantContext, *, expense_type, title=None, amount=None, spent_at=None) -> Submission:
    submission = Submission.objects.create(
        organization_id=ctx.organization_id,
        expense_type=_clean_expense_type(expense_type),
        title=_clean_title(title),
        amount=_clean_amount(amount),
        spent_at=spent_at,
        status=Submission.Status.DRAFT,
        created_by_id=ctx.user_id,
    )
    logger.info(
        "[submissions] created submission=%s org=%s user=%s",
        submission.pk,
        ctx.organization_id,
        ctx.user_id,
    )
    return submission


def list_submissions(ctx: TenantContext, *, status=None, limit=None, offset=None) -> Page:
    limit, offset = clamp_pagination(limit, offset)
    qs = tenant_submissions(ctx)
    if status:
        if status not in Submission.Status.values:
            raise ValidationError(f"Unknown status: {status}")
        qs = qs.filter(status=status)
    total = qs.count()
    items = list(
        qs.select_related("created_by")
        .prefetch_related("files")
        .annotate(comment_count=Count("comments"))
        .order_by("-created_at")[offset:offset + limit]
    )
    users = lookup_users(s.created_by_id for s in items)
    return Page(items=items, total=total, limit=limit, offset=offset, users=users)


def get_submission(ctx: TenantContext, submission_id) -> SubmissionDetail:
    submission = get_submission_for_tenant(ctx, submission_id)
    if ctx.can_review and submission.status == Submission.Status.SUBMITTED:
        open_for_review(ctx, submission.pk)
    return load_detail(ctx, submission.pk)


def update_submission(ctx: TenantContext, submission_id, fields: dict) -> Submission:
    if "status" in fields:
        raise ValidationError("Status cannot be edited; submit the submission or record a review decision")
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        submission = get_submission_for_tenant(ctx, submission_id, for_update=True)
        if submission.created_by_id != ctx.user_id:
            raise PermissionDenied("Only the creator can edit this submission")
        if submission.status != Submission.Status.DRAFT:
            raise ValidationError("Only draft submissions can be edited")

        if "expense_type" in fields:
            submission.expense_type = _clean_expense_type(fields["expense_type"])
        if "title" in fields:
            submission.title = _clean_title(fields["title"])
        if "amount" in fields:
            submission.amount = _clean_amount(fields["amount"])
        if "spent_at" in fields:
            submission.spent_at = fields["spent_at"]
        submission.save()
    return submission


def submit_submission(ctx: TenantContext, submission_id) -> Submission:
    """DRAFT → SUBMITTED, by the creator, once evidence is attached."""
    with transaction.atomic():
        submission = get_submission_for_tenant(ctx, submission_id, for_update=True)
        if submission.created_by_id != ctx.user_id:
            raise PermissionDenied("Only the creator can submit this submission")
        ensure_transition(submission.status, Submission.Status.SUBMITTED)
        if not submission.files.exists():
            raise ValidationError("Attach at least one evidence file before submitting")
        submission.status = Submission.Status.SUBMITTED
        submission.save(update_fields=["status", "updated_at"])
    logger.info("[submissions] submitted submission=%s user=%s", submission.pk, ctx.user_id)
    return submission


def open_for_review(ctx: TenantContext, submission_id) -> bool:
    """SUBMITTED → IN_REVIEW. No-op for any other status; returns whether it moved."""
    if not ctx.can_review:
        raise PermissionDenied()
    moved = tenant_submissions(ctx).filter(
        pk=submission_id,
        status=Submission.Status.SUBMITTED,
    ).update(status=Submission.Status.IN_REVIEW, updated_at=timezone.now())
    if not moved:
        # Validates existence and tenancy
        get_submission_for_tenant(ctx, submission_id)
        return False
    logger.info("[review] opened for review submission=%s user=%s", submission_id, ctx.user_id)
    return True


def open_many_for_review(ctx: TenantContext, submission_ids) -> int:
    if not ctx.can_review:
        raise PermissionDenied()
    return tenant_submissions(ctx).filter(
        pk__in=list(submission_ids),
        status=Submission.Status.SUBMITTED,
    ).update(status=Submission.Status.IN_REVIEW, updated_at=timezone.now())
