from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from ..exceptions import DependencyFailure, InvalidStateTransition, NotFound, PermissionDenied, ValidationError
from ..file_types import resolve_kind, validate_upload
from ..models import DocumentAnalysisJob, EvidenceFile, Submission
from ..storage import build_object_key, delete_object, put_object, signed_url
from ..submission_states import is_terminal
from ..tenancy import TenantContext
from .analysis_jobs import analysis_enabled, enqueue_analysis
from .submissions import get_submission_for_tenant

logger = logging.getLogger(__name__)


def get_file_for_tenant(ctx: TenantContext, file_id) -> EvidenceFile:
    try:
        return EvidenceFile.objects.select_related("submission").get(
            pk=file_id,
            submission__organization_id=ctx.organization_id,
        )
    except (EvidenceFile.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("File not found")


def _submission_accepting_files(ctx: TenantContext, submission_id) -> Submission:
    submission = get_submission_for_tenant(ctx, submission_id)
    if is_terminal(submission.status):
        raise InvalidStateTransition("Files cannot be added to an approved or rejected submission")
    return submission


def ingest(ctx: TenantContext, submission_id, data: bytes, filename: str, declared_kind=None) -> EvidenceFile:
    """
    Store an evidence document and record it on the submission.

    Validation, storage and the database write are synchronous and raise on
    failure. Analysis is queued for after commit and cannot fail the upload.
    """
    submission = _submission_accepting_files(ctx, submission_id)
    mime_type = validate_upload(filename, len(data) if data is not None else 0)
    kind = resolve_kind(declared_kind, mime_type)

    key = put_object(build_object_key(ctx.organization_id, submission.pk, filename), data, mime_type)
    try:
        with transaction.atomic():
            evidence = EvidenceFile.objects.create(
                submission=submission,
                kind=kind,
                object_key=key,
                original_filename=filename,
                size=len(data),
                mime_type=mime_type,
                uploaded_by_id=ctx.user_id,
            )
            if analysis_enabled():
                enqueue_analysis(evidence)
    except Exception:
        logger.exception("[documents] could not record file for %s; removing stored object", key)
        try:
            delete_object(key)
        except DependencyFailure:
            logger.error("[documents] orphaned object left in storage: %s", key)
        raise

    logger.info(
        "[documents] file ingested file=%s submission=%s org=%s mime=%s size=%s",
        evidence.pk,
        submission.pk,
        ctx.organization_id,
        mime_type,
        evidence.size,
    )
    return evidence


def ingest_upload(ctx: TenantContext, submission_id, upload, declared_kind=None) -> EvidenceFile:
    """``ingest`` for an uploaded file; size and type are checked before the body is read."""
    _submission_accepting_files(ctx, submission_id)
    validate_upload(upload.name, upload.size)
    return ingest(ctx, submission_id, upload.read(), upload.name, declared_kind=declared_kind)



def list_files(ctx: TenantContext, submission_id) -> list[EvidenceFile]:
    submission = get_submission_for_tenant(ctx, submission_id)
    return list(submission.files.order_by("created_at"))


def request_analysis(ctx: TenantContext, file_id) -> DocumentAnalysisJob:
    evidence = get_file_for_tenant(ctx, file_id)
    with transaction.atomic():
        job = enqueue_analysis(evidence)
    logger.info("[documents] analysis requested file=%s user=%s", evidence.pk, ctx.user_id)
    return job


def file_download_url(ctx: TenantContext, file_id, request=None) -> dict:
    evidence = get_file_for_tenant(ctx, file_id)
    return signed_url(evidence.object_key, evidence.original_filename, request=request)


def delete_file(ctx: TenantContext, file_id) -> None:
    evidence = get_file_for_tenant(ctx, file_id)
    submission = evidence.submission
    if submission.created_by_id != ctx.user_id:
        raise PermissionDenied("Only the creator can remove files from this submission")
    if submission.status != Submission.Status.DRAFT:
        raise ValidationError("Files can only be removed from draft submissions")

    delete_object(evidence.object_key)
    evidence.delete()
    logger.info("[documents] file deleted file=%s user=%s", file_id, ctx.user_id)
