from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from core.models import DocumentAnalysisJob, EvidenceFile
from core.services.documents import ingest

from .helpers import IN_MEMORY_STORAGES, add_member, ctx_for, make_org, make_pdf, make_submission, make_user

Job = DocumentAnalysisJob.Status


@override_settings(STORAGES=IN_MEMORY_STORAGES, DOCUMENT_ANALYSIS_DISPATCH="deferred", OPENAI_API_KEY="")
class ProcessAnalysisJobsCommandTests(TestCase):
    def setUp(self):
        org = make_org()
        user = make_user("creator")
        add_member(org, user)
        self.ctx = ctx_for(user, org)
        self.submission = make_submission(org, user)

    def _upload(self, filename="facture-avril.pdf"):
        with self.captureOnCommitCallbacks(execute=True):
            return ingest(self.ctx, self.submission.pk, make_pdf(), filename)

    def test_runs_pending_jobs(self):
        evidence = self._upload()
        self.assertEqual(DocumentAnalysisJob.objects.get(file=evidence).status, Job.PENDING)

        out = StringIO()
        call_command("process_analysis_jobs", stdout=out)

        self.assertIn("Processed 1 job(s): 1 succeeded, 0 failed, 0 skipped", out.getvalue())
        evidence.refresh_from_db()
        self.assertEqual(evidence.analysis["fields"]["document_type"], "invoice")
        self.assertEqual(evidence.analysis["model"]["method"], "heuristic")
        self.assertIn("Total TTC", evidence.extracted_text)

    def test_failed_jobs_need_retry_flag(self):
        evidence = self._upload()
        DocumentAnalysisJob.objects.filter(file=evidence).update(status=Job.FAILED, attempts=1)

        out = StringIO()
        call_command("process_analysis_jobs", stdout=out)
        self.assertIn("Processed 0 job(s)", out.getvalue())

        call_command("process_analysis_jobs", "--retry-failed", stdout=out)
        job = DocumentAnalysisJob.objects.get(file=evidence)
        self.assertEqual(job.status, Job.SUCCEEDED)
        self.assertEqual(job.attempts, 2)

    def test_limit(self):
        self._upload("a.pdf")
        self._upload("b.pdf")
        call_command("process_analysis_jobs", "--limit", "1", stdout=StringIO())
        self.assertEqual(DocumentAnalysisJob.objects.filter(status=Job.PENDING).count(), 1)
        self.assertEqual(EvidenceFile.objects.exclude(analysis=None).count(), 1)

    def test_rejects_non_positive_limit(self):
        with self.assertRaises(CommandError):
            call_command("process_analysis_jobs", "--limit", "0", stdout=StringIO())
