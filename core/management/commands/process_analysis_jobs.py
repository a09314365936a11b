"""
Run queued document-analysis jobs.

USAGE:
  python manage.py process_analysis_jobs
  python manage.py process_analysis_jobs --retry-failed --limit 50

Use with DOCUMENT_ANALYSIS_DISPATCH=deferred (jobs are only queued by uploads),
or periodically to retry jobs that failed while attempts remain.
"""
from django.core.management.base import BaseCommand, CommandError

from core.services.analysis_jobs import max_attempts, process_pending_jobs


class Command(BaseCommand):
    help = "Process pending document-analysis jobs, optionally retrying failed ones."

    def add_arguments(self, parser):
        parser.add_argument(
            "--retry-failed",
            action="store_true",
            help="Also re-run FAILED jobs that still have attempts left.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of jobs to run in this pass.",
        )

    def handle(self, *args, **options):
        limit = options["limit"]
        if limit is not None and limit < 1:
            raise CommandError("--limit must be a positive integer")

        counts = process_pending_jobs(limit=limit, retry_failed=options["retry_failed"])
        self.stdout.write(
            self.style.SUCCESS(
                f"Processed {counts['processed']} job(s): "
                f"{counts['succeeded']} succeeded, {counts['failed']} failed, {counts['skipped']} skipped "
                f"(max attempts {max_attempts()})."
            )
        )
