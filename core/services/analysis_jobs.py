"""
Queue of document-analysis jobs.

A job row is created in the same transaction as its file and dispatched after
commit according to ``DOCUMENT_ANALYSIS_DISPATCH``:

- ``thread``: run on a detached daemon thread
- ``inline``: run right away in the committing thread
- ``deferred``: leave it for ``manage.py process_analysis_jobs``

A RUNNING job whose worker died is marked FAILED by ``reap_stale_jobs`` once it
is older than ``stale_after_seconds`` and is then retried like any failed job.

``run_job`` never raises. Failures are recorded on the job and logged; the
file's ``analysis`` is only written on success.
"""
from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from functools import partial

from django.conf import settings
from django.db import close_old_connections, connection, transaction
from django.db.models import F, Q
from django.utils import timezone

from ..document_analysis import build_analysis_payload, get_document_analyzer
from ..document_text import extract_text
from ..models import DocumentAnalysisJob, EvidenceFile
from ..storage import get_object

logger = logging.getLogger(__name__)

Status = DocumentAnalysisJob.Status


def analysis_enabled() -> bool:
    return getattr(settings, "DOCUMENT_ANALYSIS_ENABLED", True)


def max_attempts() -> int:
    return getattr(settings, "DOCUMENT_ANALYSIS_MAX_ATTEMPTS", 3)


def enqueue_analysis(evidence_file: EvidenceFile) -> DocumentAnalysisJob:
    job = DocumentAnalysisJob.objects.create(file=evidence_file)
    transaction.on_commit(partial(dispatch_job, job.pk))
    return job


def dispatch_job(job_id) -> None:
    mode = getattr(settings, "DOCUMENT_ANALYSIS_DISPATCH", "thread")
    if mode == "inline":
        run_job(job_id)
    elif mode == "thread":
        worker = threading.Thread(
            target=_run_in_thread,
            args=(job_id,),
            name=f"document-analysis-{job_id}",
            daemon=True,
        )
        worker.start()
    else:
        logger.debug("[analysis] job %s deferred to the job processor", job_id)


def _run_in_thread(job_id) -> None:
    close_old_connections()
    try:
        run_job(job_id)
    finally:
        connection.close()


def _claim(job_id) -> bool:
    claimed = DocumentAnalysisJob.objects.filter(
        Q(status=Status.PENDING) | Q(status=Status.FAILED, attempts__lt=max_attempts()),
        pk=job_id,
    ).update(
        status=Status.RUNNING,
        attempts=F("attempts") + 1,
        started_at=timezone.now(),
        finished_at=None,
        last_error="",
    )
    return bool(claimed)


def _finish(job: DocumentAnalysisJob, status: str, *, method: str = "", error: str = "") -> None:
    job.status = status
    job.method = method or job.method
    job.last_error = error[:2000]
    job.finished_at = timezone.now()
    job.save(update_fields=["status", "method", "last_error", "finished_at"])


def run_job(job_id, analyzer=None) -> DocumentAnalysisJob | None:
    if not _claim(job_id):
        logger.debug("[analysis] job %s is not runnable", job_id)
        return None

    job = DocumentAnalysisJob.objects.select_related("file").get(pk=job_id)
    try:
        _analyze(job, analyzer)
    except Exception as exc:
        logger.exception("[analysis] job %s crashed on file %s", job.pk, job.file_id)
        _finish(job, Status.FAILED, error=str(exc) or exc.__class__.__name__)
    return job


def _analyze(job: DocumentAnalysisJob, analyzer) -> None:
    evidence = job.file
    started = time.monotonic()

    data = get_object(evidence.object_key)
    text = extract_text(data, evidence.mime_type)
    if text is not None and text != evidence.extracted_text:
        EvidenceFile.objects.filter(pk=evidence.pk).update(extracted_text=text)

    analyzer = analyzer or get_document_analyzer()
    outcome = analyzer.analyze(data, evidence.mime_type, evidence.original_filename, text)
    processing_ms = int((time.monotonic() - started) * 1000)

    if not outcome.success:
        logger.warning(
            "[analysis] extraction failed for file %s (attempt %s): %s",
            evidence.pk,
            job.attempts,
            outcome.error,
        )
        _finish(job, Status.FAILED, method=outcome.method, error=outcome.error or "analysis failed")
        return

    payload = build_analysis_payload(outcome, processing_ms)
    EvidenceFile.objects.filter(pk=evidence.pk).update(analysis=payload)
    _finish(job, Status.SUCCEEDED, method=outcome.method)
    logger.info(
        "[analysis] file analyzed file=%s method=%s processing_ms=%s",
        evidence.pk,
        outcome.method,
        processing_ms,
    )


def stale_after_seconds() -> int:
    # A run makes at most a text and a vision call, each bounded by the timeout.
    timeout = getattr(settings, "DOCUMENT_ANALYSIS_TIMEOUT_SECONDS", 45)
    return max(timeout * 4, 300)


def reap_stale_jobs() -> int:
    """Mark RUNNING jobs whose worker vanished as FAILED so they can be retried."""
    cutoff = timezone.now() - timedelta(seconds=stale_after_seconds())
    reaped = DocumentAnalysisJob.objects.filter(
        Q(started_at__lt=cutoff) | Q(started_at__isnull=True),
        status=Status.RUNNING,
    ).update(
        status=Status.FAILED,
        finished_at=timezone.now(),
        last_error="abandoned while running",
    )
    if reaped:
        logger.warning("[analysis] marked %s stale running job(s) as failed", reaped)
    return reaped


def runnable_jobs(*, retry_failed: bool = False):
    condition = Q(status=Status.PENDING)
    if retry_failed:
        condition |= Q(status=Status.FAILED, attempts__lt=max_attempts())
    return DocumentAnalysisJob.objects.filter(condition).order_by("created_at")


def process_pending_jobs(*, limit: int | None = None, retry_failed: bool = False, analyzer=None) -> dict:
    reap_stale_jobs()
    job_ids = list(runnable_jobs(retry_failed=retry_failed).values_list("pk", flat=True))
    if limit is not None:
        job_ids = job_ids[:limit]

    counts = {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0}
    for job_id in job_ids:
        job = run_job(job_id, analyzer=analyzer)
        if job is None:
            counts["skipped"] += 1
            continue
        counts["processed"] += 1
        if job.status == Status.SUCCEEDED:
            counts["succeeded"] += 1
        else:
            counts["failed"] += 1
    return counts
