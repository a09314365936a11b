"""
Review workflow: pending-review listing, decisions, comments.

A decision changes the submission status and records the decision comment in
one transaction. The row is locked with ``select_for_update`` and the status
write is conditional on the submission still being reviewable, so of two
concurrent decisions only one can succeed; the other sees a terminal status
and gets ``InvalidStateTransition``.
"""
from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from notifications.services import notify_new_comment, notify_submission_status, send_after_commit

from ..exceptions import InvalidStateTransition, PermissionDenied, ValidationError
from ..identity import lookup_users
from ..models import Comment, Submission
from ..submission_states import REVIEWABLE_STATUSES, ensure_reviewable, status_for_decision
from ..tenancy import TenantContext
from .submissions import (
    Page,
    SubmissionDetail,
    clamp_pagination,
    get_submission_for_tenant,
    load_detail,
    open_many_for_review,
    tenant_submissions,
    users_for,
    with_history,
)

logger = logging.getLogger(__name__)


def _require_reviewer(ctx: TenantContext) -> None:
    if not ctx.can_review:
        logger.debug("[review] denied for user=%s role=%s", ctx.user_id, ctx.role.value)
        raise PermissionDenied()


def _clean_text(text, message: str) -> str:
    cleaned = text.strip() if isinstance(text, str) else ""
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def _clean_decision(decision) -> str:
    value = decision.strip().upper() if isinstance(decision, str) else ""
    if value not in Comment.Decision.values:
        raise ValidationError("Invalid decision. Must be APPROVE or REJECT")
    return value


def list_for_review(ctx: TenantContext, *, limit=None, offset=None) -> Page:
    """Submissions awaiting a decision, newest first. Listing them opens them for review."""
    _require_reviewer(ctx)
    limit, offset = clamp_pagination(limit, offset)

    qs = tenant_submissions(ctx).filter(status__in=REVIEWABLE_STATUSES).order_by("-created_at")
    total = qs.count()
    items = list(with_history(qs)[offset:offset + limit])

    to_open = [s.pk for s in items if s.status == Submission.Status.SUBMITTED]
    if to_open:
        open_many_for_review(ctx, to_open)
        current = dict(Submission.objects.filter(pk__in=to_open).values_list("pk", "status"))
        for submission in items:
            if submission.pk in current:
                submission.status = current[submission.pk]

    return Page(items=items, total=total, limit=limit, offset=offset, users=users_for(items))


def submit_decision(ctx: TenantContext, submission_id, decision, comment_text) -> SubmissionDetail:
    _require_reviewer(ctx)
    decision = _clean_decision(decision)
    text = _clean_text(comment_text, "Comment is required")
    target = status_for_decision(decision)

    with transaction.atomic():
        submission = get_submission_for_tenant(ctx, submission_id, for_update=True)
        ensure_reviewable(submission.status)

        moved = Submission.objects.filter(
            pk=submission.pk,
            status__in=REVIEWABLE_STATUSES,
        ).update(status=target, updated_at=timezone.now())
        if moved != 1:
            raise InvalidStateTransition()

        Comment.objects.create(
            submission=submission,
            author_id=ctx.user_id,
            text=text,
            decision=decision,
        )
        send_after_commit(
            notify_submission_status,
            ctx.organization_id,
            submission.created_by_id,
            submission.pk,
            target,
            actor_id=ctx.user_id,
        )

    logger.info(
        "[review] decision recorded submission=%s org=%s reviewer=%s decision=%s",
        submission.pk,
        ctx.organization_id,
        ctx.user_id,
        decision,
    )
    return load_detail(ctx, submission.pk)


def add_comment(ctx: TenantContext, submission_id, text) -> tuple[Comment, dict]:
    text = _clean_text(text, "Comment text is required")

    with transaction.atomic():
        submission = get_submission_for_tenant(ctx, submission_id)
        if not (ctx.can_review or submission.created_by_id == ctx.user_id):
            raise PermissionDenied("Only reviewers or the submission creator can comment")

        comment = Comment.objects.create(submission=submission, author_id=ctx.user_id, text=text)
        if submission.created_by_id != ctx.user_id:
            send_after_commit(
                notify_new_comment,
                ctx.organization_id,
                submission.created_by_id,
                submission.pk,
                actor_id=ctx.user_id,
            )

    logger.info("[review] comment added submission=%s author=%s", submission.pk, ctx.user_id)
    users = lookup_users([ctx.user_id])
    return comment, users


def list_comments(ctx: TenantContext, submission_id) -> tuple[list[Comment], dict]:
    submission = get_submission_for_tenant(ctx, submission_id)
    comments = list(submission.comments.select_related("author").order_by("-created_at"))
    users = lookup_users(c.author_id for c in comments)
    return comments, users
