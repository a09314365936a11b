from unittest import mock

from django.test import TestCase
from rest_framework.test import APIClient

from core.tests.helpers import add_member, make_org, make_user

from . import services
from .models import Notification


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.org = make_org()
        self.other_org = make_org("Autre", "autre")
        self.user = make_user("creator")

    def test_status_message(self):
        notification = services.notify_submission_status(
            self.org.pk, self.user.pk, "abc", "APPROVED", action_by="Rachid Benali"
        )
        self.assertEqual(notification.message, "Submission abc has been approved by Rachid Benali")
        self.assertEqual(notification.type, Notification.Type.SUBMISSION_STATUS_CHANGE)
        self.assertFalse(notification.read)

    def test_comment_and_system_messages(self):
        comment = services.notify_new_comment(self.org.pk, self.user.pk, "abc")
        self.assertEqual(comment.message, "New comment on submission abc")
        system = services.notify_system(self.org.pk, self.user.pk, "Maintenance tonight")
        self.assertEqual(system.type, Notification.Type.SYSTEM)

    def test_send_after_commit_waits_for_commit(self):
        with self.captureOnCommitCallbacks() as callbacks:
            services.send_after_commit(services.notify_system, self.org.pk, self.user.pk, "hello")
            self.assertFalse(Notification.objects.exists())
        self.assertEqual(len(callbacks), 1)
        callbacks[0]()
        self.assertEqual(Notification.objects.get().message, "hello")

    def test_delivery_failure_is_logged(self):
        failing = mock.Mock(side_effect=RuntimeError("down"))
        with self.assertLogs("notifications.services", level="ERROR") as logs:
            with self.captureOnCommitCallbacks(execute=True):
                services.send_after_commit(failing, self.org.pk, self.user.pk, "hello")
        self.assertIn("delivery failed", logs.output[0])

    def test_read_state_is_scoped_by_organization(self):
        mine = services.notify_system(self.org.pk, self.user.pk, "a")
        services.notify_system(self.org.pk, self.user.pk, "b")
        services.notify_system(self.other_org.pk, self.user.pk, "c")

        self.assertEqual(services.unread_count(self.org.pk, self.user.pk), 2)
        self.assertFalse(services.mark_read(self.other_org.pk, self.user.pk, mine.pk))
        self.assertTrue(services.mark_read(self.org.pk, self.user.pk, mine.pk))
        self.assertEqual(services.mark_all_read(self.org.pk, self.user.pk), 1)
        self.assertEqual(services.unread_count(self.org.pk, self.user.pk), 0)
        self.assertEqual(services.unread_count(self.other_org.pk, self.user.pk), 1)


class NotificationApiTests(TestCase):
    def setUp(self):
        self.org = make_org()
        self.user = make_user("creator")
        self.other = make_user("other")
        add_member(self.org, self.user)
        add_member(self.org, self.other)
        self.first = services.notify_system(self.org.pk, self.user.pk, "first")
        self.second = services.notify_system(self.org.pk, self.user.pk, "second")
        services.notify_system(self.org.pk, self.other.pk, "not yours")

        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.client.credentials(HTTP_X_ORGANIZATION_ID=str(self.org.pk))

    def test_list(self):
        resp = self.client.get("/api/notifications/")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["unread_count"], 2)
        self.assertEqual(data["pagination"]["total"], 2)
        self.assertEqual({n["message"] for n in data["notifications"]}, {"first", "second"})

    def test_read_filter(self):
        Notification.objects.filter(pk=self.first.pk).update(read=True)
        resp = self.client.get("/api/notifications/", {"read": "false"})
        self.assertEqual([n["message"] for n in resp.json()["notifications"]], ["second"])
        resp = self.client.get("/api/notifications/", {"read": "maybe"})
        self.assertEqual(resp.status_code, 400)

    def test_mark_read(self):
        resp = self.client.post(f"/api/notifications/{self.first.pk}/read/")
        self.assertEqual(resp.status_code, 200)
        self.first.refresh_from_db()
        self.assertTrue(self.first.read)

        foreign = Notification.objects.get(user=self.other)
        resp = self.client.post(f"/api/notifications/{foreign.pk}/read/")
        self.assertEqual(resp.status_code, 404)
        foreign.refresh_from_db()
        self.assertFalse(foreign.read)

    def test_mark_all_read(self):
        resp = self.client.post("/api/notifications/read-all/")
        self.assertEqual(resp.json(), {"success": True, "updated": 2})
        self.assertEqual(Notification.objects.filter(read=False).count(), 1)
