from datetime import timedelta
from unittest import mock

from django.core.files.storage import default_storage
from django.test import TestCase, override_settings
from django.utils import timezone

from core.document_analysis import AnalysisOutcome, ExpenseExtraction
from core.exceptions import InvalidStateTransition, NotFound, PermissionDenied, ValidationError
from core.file_types import infer_kind
from core.models import DocumentAnalysisJob, EvidenceFile, Submission
from core.services import analysis_jobs, documents
from core.storage import unsign_object_key

from .helpers import IN_MEMORY_STORAGES, PNG_BYTES, add_member, ctx_for, make_org, make_pdf, make_submission, make_user

S = Submission.Status


class StubAnalyzer:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.calls = []

    def analyze(self, data, mime_type, filename, text=None):
        self.calls.append((mime_type, filename, text))
        if self.error:
            raise self.error
        return self.outcome


@override_settings(STORAGES=IN_MEMORY_STORAGES, DOCUMENT_ANALYSIS_DISPATCH="inline", MAX_UPLOAD_BYTES=1024 * 1024)
class IngestTests(TestCase):
    def setUp(self):
        self.org = make_org()
        self.other_org = make_org("Autre", "autre")
        self.user = make_user("creator")
        add_member(self.org, self.user)
        self.ctx = ctx_for(self.user, self.org)
        self.submission = make_submission(self.org, self.user)

    def test_valid_image_creates_row_and_object(self):
        success = AnalysisOutcome(success=True, method="ai", data=ExpenseExtraction(supplier="Bureau Vallée"))
        with mock.patch("core.services.analysis_jobs.get_document_analyzer", return_value=StubAnalyzer(success)):
            with self.captureOnCommitCallbacks(execute=True):
                evidence = documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "photo reçu.png")

        self.assertEqual(EvidenceFile.objects.count(), 1)
        self.assertEqual(evidence.mime_type, "image/png")
        self.assertEqual(evidence.kind, EvidenceFile.Kind.OTHER)
        self.assertEqual(evidence.size, len(PNG_BYTES))
        self.assertTrue(evidence.object_key.startswith(f"organizations/{self.org.pk}/submissions/{self.submission.pk}/"))
        self.assertTrue(evidence.object_key.endswith("_photo_re_u.png"))
        with default_storage.open(evidence.object_key, "rb") as fh:
            self.assertEqual(fh.read(), PNG_BYTES)

        evidence.refresh_from_db()
        self.assertEqual(evidence.analysis["fields"]["supplier"], "Bureau Vallée")
        self.assertEqual(evidence.analysis["model"]["method"], "ai")
        self.assertEqual(evidence.analysis_jobs.get().status, DocumentAnalysisJob.Status.SUCCEEDED)

    def test_object_keys_are_unique_per_upload(self):
        with override_settings(DOCUMENT_ANALYSIS_ENABLED=False):
            first = documents.ingest(self.ctx, self.submission.pk, b"a,b\n1,2\n", "table.csv")
            second = documents.ingest(self.ctx, self.submission.pk, b"a,b\n1,2\n", "table.csv")
        self.assertNotEqual(first.object_key, second.object_key)

    def test_analysis_failure_leaves_analysis_null(self):
        failure = AnalysisOutcome.failed("ai", "HTTP 500")
        with mock.patch("core.services.analysis_jobs.get_document_analyzer", return_value=StubAnalyzer(failure)):
            with self.captureOnCommitCallbacks(execute=True):
                evidence = documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "receipt.png")

        evidence.refresh_from_db()
        self.assertIsNone(evidence.analysis)
        job = evidence.analysis_jobs.get()
        self.assertEqual(job.status, DocumentAnalysisJob.Status.FAILED)
        self.assertEqual(job.last_error, "HTTP 500")
        self.assertEqual(job.attempts, 1)

    def test_analyzer_crash_does_not_reach_caller(self):
        crashing = StubAnalyzer(error=RuntimeError("model exploded"))
        with mock.patch("core.services.analysis_jobs.get_document_analyzer", return_value=crashing):
            with self.captureOnCommitCallbacks(execute=True):
                evidence = documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "receipt.png")

        evidence.refresh_from_db()
        self.assertIsNone(evidence.analysis)
        self.assertEqual(evidence.analysis_jobs.get().last_error, "model exploded")

    def test_pdf_text_is_extracted_before_analysis(self):
        analyzer = StubAnalyzer(AnalysisOutcome(success=True, method="ai", data=ExpenseExtraction()))
        with mock.patch("core.services.analysis_jobs.get_document_analyzer", return_value=analyzer):
            with self.captureOnCommitCallbacks(execute=True):
                evidence = documents.ingest(self.ctx, self.submission.pk, make_pdf("Total TTC 120.00 EUR"), "facture.pdf")

        evidence.refresh_from_db()
        self.assertEqual(evidence.kind, EvidenceFile.Kind.INVOICE)
        self.assertIn("120.00", evidence.extracted_text)
        mime_type, filename, text = analyzer.calls[0]
        self.assertEqual((mime_type, filename), ("application/pdf", "facture.pdf"))
        self.assertIn("Total TTC", text)

    def test_unsupported_type_creates_nothing(self):
        with mock.patch("core.services.documents.put_object") as put_object:
            with self.assertRaises(ValidationError):
                documents.ingest(self.ctx, self.submission.pk, b"MZ\x90\x00", "setup.exe")
        put_object.assert_not_called()
        self.assertFalse(EvidenceFile.objects.exists())

    def test_type_comes_from_extension_not_content(self):
        with self.assertRaises(ValidationError):
            documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "image.svg")

    def test_oversize_and_empty_files_rejected(self):
        with self.assertRaises(ValidationError) as exc:
            documents.ingest(self.ctx, self.submission.pk, b"x" * (1024 * 1024 + 1), "big.pdf")
        self.assertIn("too large", exc.exception.message)
        with self.assertRaises(ValidationError):
            documents.ingest(self.ctx, self.submission.pk, b"", "empty.pdf")
        self.assertFalse(EvidenceFile.objects.exists())

    def test_declared_kind(self):
        with override_settings(DOCUMENT_ANALYSIS_ENABLED=False):
            evidence = documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "ticket.png", declared_kind="receipt")
            self.assertEqual(evidence.kind, EvidenceFile.Kind.RECEIPT)
            with self.assertRaises(ValidationError):
                documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "ticket.png", declared_kind="poem")

    def test_other_organization_submission_is_not_found(self):
        foreign = make_submission(self.other_org, make_user("foreigner"))
        with self.assertRaises(NotFound):
            documents.ingest(self.ctx, foreign.pk, PNG_BYTES, "receipt.png")

    def test_terminal_submission_rejects_uploads(self):
        approved = make_submission(self.org, self.user, status=S.APPROVED)
        with self.assertRaises(InvalidStateTransition):
            documents.ingest(self.ctx, approved.pk, PNG_BYTES, "receipt.png")

    def test_database_failure_removes_stored_object(self):
        with mock.patch("core.services.documents.EvidenceFile.objects.create", side_effect=RuntimeError("db down")):
            with mock.patch("core.services.documents.delete_object") as delete_object:
                with self.assertRaises(RuntimeError):
                    documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "receipt.png")
        delete_object.assert_called_once()
        key = delete_object.call_args.args[0]
        self.assertTrue(key.startswith(f"organizations/{self.org.pk}/"))

    def test_disabled_analysis_queues_nothing(self):
        with override_settings(DOCUMENT_ANALYSIS_ENABLED=False):
            documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "receipt.png")
        self.assertFalse(DocumentAnalysisJob.objects.exists())


class KindInferenceTests(TestCase):
    def test_mime_table(self):
        K = EvidenceFile.Kind
        self.assertEqual(infer_kind("image/jpeg"), K.OTHER)
        self.assertEqual(infer_kind("application/pdf"), K.INVOICE)
        self.assertEqual(infer_kind("application/vnd.ms-excel"), K.CONTRACT)
        self.assertEqual(infer_kind("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"), K.CONTRACT)
        self.assertEqual(infer_kind("application/msword"), K.CONTRACT)
        self.assertEqual(infer_kind("text/csv"), K.OTHER)


@override_settings(STORAGES=IN_MEMORY_STORAGES, DOCUMENT_ANALYSIS_DISPATCH="deferred")
class FileOperationTests(TestCase):
    def setUp(self):
        self.org = make_org()
        self.user = make_user("creator")
        add_member(self.org, self.user)
        self.ctx = ctx_for(self.user, self.org)
        self.submission = make_submission(self.org, self.user)
        self.evidence = documents.ingest(self.ctx, self.submission.pk, PNG_BYTES, "receipt.png")

    def test_list_files(self):
        self.assertEqual([f.pk for f in documents.list_files(self.ctx, self.submission.pk)], [self.evidence.pk])

    def test_signed_url_round_trip(self):
        payload = documents.file_download_url(self.ctx, self.evidence.pk)
        self.assertEqual(payload["expires_in"], 24 * 60 * 60)
        token = payload["url"].rstrip("/").rsplit("/", 1)[-1]
        self.assertEqual(unsign_object_key(token), (self.evidence.object_key, "receipt.png"))

    def test_tampered_token_is_rejected(self):
        with self.assertRaises(NotFound):
            unsign_object_key("organizations/1/submissions/x:forged:token")

    def test_expired_token_is_rejected(self):
        token = documents.file_download_url(self.ctx, self.evidence.pk)["url"].rstrip("/").rsplit("/", 1)[-1]
        with override_settings(SIGNED_URL_MAX_AGE_SECONDS=-1):
            with self.assertRaises(NotFound):
                unsign_object_key(token)

    def test_request_analysis_queues_job(self):
        jobs_before = DocumentAnalysisJob.objects.count()
        job = documents.request_analysis(self.ctx, self.evidence.pk)
        self.assertEqual(job.status, DocumentAnalysisJob.Status.PENDING)
        self.assertEqual(DocumentAnalysisJob.objects.count(), jobs_before + 1)

    def test_creator_deletes_draft_file(self):
        key = self.evidence.object_key
        documents.delete_file(self.ctx, self.evidence.pk)
        self.assertFalse(EvidenceFile.objects.exists())
        self.assertFalse(default_storage.exists(key))

    def test_delete_restrictions(self):
        other = make_user("other")
        add_member(self.org, other)
        with self.assertRaises(PermissionDenied):
            documents.delete_file(ctx_for(other, self.org), self.evidence.pk)

        Submission.objects.filter(pk=self.submission.pk).update(status=S.SUBMITTED)
        with self.assertRaises(ValidationError):
            documents.delete_file(self.ctx, self.evidence.pk)
        self.assertTrue(EvidenceFile.objects.filter(pk=self.evidence.pk).exists())


@override_settings(STORAGES=IN_MEMORY_STORAGES, DOCUMENT_ANALYSIS_DISPATCH="deferred", DOCUMENT_ANALYSIS_MAX_ATTEMPTS=2)
class AnalysisJobTests(TestCase):
    def setUp(self):
        org = make_org()
        user = make_user("creator")
        add_member(org, user)
        ctx = ctx_for(user, org)
        submission = make_submission(org, user)
        self.evidence = documents.ingest(ctx, submission.pk, b"Fournisseur;Montant\nACME;42.00\n", "note.csv")
        self.job = self.evidence.analysis_jobs.get()

    def test_deferred_job_waits_for_processor(self):
        self.assertEqual(self.job.status, DocumentAnalysisJob.Status.PENDING)
        analyzer = StubAnalyzer(AnalysisOutcome(success=True, method="heuristic", data=ExpenseExtraction()))
        counts = analysis_jobs.process_pending_jobs(analyzer=analyzer)
        self.assertEqual(counts, {"processed": 1, "succeeded": 1, "failed": 0, "skipped": 0})
        self.evidence.refresh_from_db()
        self.assertIn("ACME", self.evidence.extracted_text)
        self.assertEqual(self.evidence.analysis["model"]["method"], "heuristic")

    def test_failed_jobs_retry_until_attempts_exhausted(self):
        failing = StubAnalyzer(AnalysisOutcome.failed("ai", "timed out after 45s"))
        analysis_jobs.process_pending_jobs(analyzer=failing)
        self.assertEqual(analysis_jobs.process_pending_jobs(analyzer=failing)["processed"], 0)

        counts = analysis_jobs.process_pending_jobs(analyzer=failing, retry_failed=True)
        self.assertEqual(counts["failed"], 1)
        self.job.refresh_from_db()
        self.assertEqual(self.job.attempts, 2)

        self.assertEqual(analysis_jobs.process_pending_jobs(analyzer=failing, retry_failed=True)["processed"], 0)
        self.assertIsNone(analysis_jobs.run_job(self.job.pk, analyzer=failing))

    def test_stale_running_job_is_reclaimed(self):
        DocumentAnalysisJob.objects.filter(pk=self.job.pk).update(
            status=DocumentAnalysisJob.Status.RUNNING,
            attempts=1,
            started_at=timezone.now() - timedelta(days=2),
        )
        analyzer = StubAnalyzer(AnalysisOutcome(success=True, method="heuristic", data=ExpenseExtraction()))
        counts = analysis_jobs.process_pending_jobs(analyzer=analyzer, retry_failed=True)

        self.assertEqual(counts, {"processed": 1, "succeeded": 1, "failed": 0, "skipped": 0})
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, DocumentAnalysisJob.Status.SUCCEEDED)
        self.assertEqual(self.job.attempts, 2)

    def test_stale_job_without_attempts_left_stays_failed(self):
        DocumentAnalysisJob.objects.filter(pk=self.job.pk).update(
            status=DocumentAnalysisJob.Status.RUNNING,
            attempts=2,
            started_at=timezone.now() - timedelta(days=2),
        )
        counts = analysis_jobs.process_pending_jobs(analyzer=StubAnalyzer(), retry_failed=True)

        self.assertEqual(counts["processed"], 0)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, DocumentAnalysisJob.Status.FAILED)
        self.assertEqual(self.job.last_error, "abandoned while running")

    def test_recent_running_job_is_left_alone(self):
        DocumentAnalysisJob.objects.filter(pk=self.job.pk).update(
            status=DocumentAnalysisJob.Status.RUNNING,
            attempts=1,
            started_at=timezone.now(),
        )
        self.assertEqual(analysis_jobs.reap_stale_jobs(), 0)
        self.assertEqual(analysis_jobs.process_pending_jobs(analyzer=StubAnalyzer(), retry_failed=True)["processed"], 0)
        self.job.refresh_from_db()
        self.assertEqual(self.job.status, DocumentAnalysisJob.Status.RUNNING)

    def test_missing_object_fails_job(self):
        default_storage.delete(self.evidence.object_key)
        job = analysis_jobs.run_job(self.job.pk, analyzer=StubAnalyzer())
        self.assertEqual(job.status, DocumentAnalysisJob.Status.FAILED)
        self.assertIn("not found", job.last_error.lower())
