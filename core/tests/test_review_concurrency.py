from threading import Lock, Thread
from unittest import mock

from django.db import close_old_connections, connection
from django.test import TransactionTestCase

from core.exceptions import InvalidStateTransition
from core.models import Comment, Submission
from core.permissions import Role
from core.services.review import submit_decision
from notifications.models import Notification

from .helpers import add_member, ctx_for, make_org, make_submission, make_user


class ReviewConcurrencyTests(TransactionTestCase):
    def setUp(self):
        self.org = make_org()
        self.creator = make_user("creator")
        add_member(self.org, self.creator)
        self.reviewers = []
        for ix in range(4):
            reviewer = make_user(f"reviewer{ix}")
            add_member(self.org, reviewer, "org:reviewer")
            self.reviewers.append(reviewer)
        self.submission = make_submission(self.org, self.creator, status=Submission.Status.IN_REVIEW)

    def test_concurrent_decisions_record_exactly_one(self):
        if connection.vendor == "sqlite":
            self.skipTest("SQLite locking makes this concurrency test flaky; run on Postgres/MySQL.")

        successes: list[str] = []
        failures: list[str] = []
        lock = Lock()

        def worker(reviewer, decision):
            close_old_connections()
            try:
                submit_decision(ctx_for(reviewer, self.org, Role.REVIEWER), self.submission.pk, decision, "decided")
                with lock:
                    successes.append(decision)
            except InvalidStateTransition as exc:
                with lock:
                    failures.append(str(exc))
            finally:
                close_old_connections()

        decisions = ["APPROVE", "REJECT", "APPROVE", "REJECT"]
        threads = [Thread(target=worker, args=(r, d)) for r, d in zip(self.reviewers, decisions)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 3)
        self.submission.refresh_from_db()
        expected = Submission.Status.APPROVED if successes[0] == "APPROVE" else Submission.Status.REJECTED
        self.assertEqual(self.submission.status, expected)
        self.assertEqual(Comment.objects.filter(submission=self.submission).count(), 1)

    def test_decisions_in_turn_record_exactly_one(self):
        outcomes = []
        for reviewer, decision in zip(self.reviewers, ["REJECT", "APPROVE", "APPROVE", "REJECT"]):
            try:
                submit_decision(ctx_for(reviewer, self.org, Role.REVIEWER), self.submission.pk, decision, "decided")
                outcomes.append("ok")
            except InvalidStateTransition:
                outcomes.append("refused")

        self.assertEqual(outcomes, ["ok", "refused", "refused", "refused"])
        self.submission.refresh_from_db()
        self.assertEqual(self.submission.status, Submission.Status.REJECTED)
        self.assertEqual(Comment.objects.filter(submission=self.submission).count(), 1)

    def test_decision_landing_after_lock_is_refused(self):
        # A competing decision commits between the row read and the conditional write.
        def decided_elsewhere(status):
            Submission.objects.filter(pk=self.submission.pk).update(status=Submission.Status.APPROVED)

        ctx = ctx_for(self.reviewers[0], self.org, Role.REVIEWER)
        with mock.patch("core.services.review.ensure_reviewable", side_effect=decided_elsewhere):
            with self.assertRaises(InvalidStateTransition):
                submit_decision(ctx, self.submission.pk, "REJECT", "too late")

        self.assertFalse(Comment.objects.filter(submission=self.submission).exists())
        self.assertFalse(Notification.objects.exists())
