"""
Notification sink.

The review workflow never waits on notifications: ``send_after_commit`` queues
the write for after the surrounding transaction commits, and a failing write is
logged and dropped.
"""
from __future__ import annotations

import logging
from functools import partial

from django.db import transaction

from core.identity import get_identity_provider

from .models import Notification

logger = logging.getLogger(__name__)


def create_notification(organization_id, user_id, type: str, message: str) -> Notification:
    return Notification.objects.create(
        organization_id=organization_id,
        user_id=user_id,
        type=type,
        message=message,
    )


def _actor_name(actor_id) -> str | None:
    if actor_id is None:
        return None
    info = get_identity_provider().get_users_info([actor_id]).get(actor_id)
    return info.display_name if info else None


def notify_submission_status(
    organization_id, user_id, submission_id, status: str, action_by: str | None = None, actor_id=None
):
    action_by = action_by or _actor_name(actor_id)
    action_text = f" by {action_by}" if action_by else ""
    message = f"Submission {submission_id} has been {status.lower()}{action_text}"
    return create_notification(organization_id, user_id, Notification.Type.SUBMISSION_STATUS_CHANGE, message)


def notify_new_comment(organization_id, user_id, submission_id, comment_by: str | None = None, actor_id=None):
    comment_by = comment_by or _actor_name(actor_id)
    comment_text = f" by {comment_by}" if comment_by else ""
    message = f"New comment on submission {submission_id}{comment_text}"
    return create_notification(organization_id, user_id, Notification.Type.NEW_COMMENT, message)


def notify_system(organization_id, user_id, message: str):
    return create_notification(organization_id, user_id, Notification.Type.SYSTEM, message)


def _deliver(func, *args, **kwargs) -> None:
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("[notifications] delivery failed via %s", getattr(func, "__name__", func))


def send_after_commit(func, *args, **kwargs) -> None:
    """Run a ``notify_*`` call once the current transaction commits, best effort."""
    transaction.on_commit(partial(_deliver, func, *args, **kwargs))


# --- Reading side ---


def notifications_for(organization_id, user_id, read: bool | None = None):
    qs = Notification.objects.filter(organization_id=organization_id, user_id=user_id)
    if read is not None:
        qs = qs.filter(read=read)
    return qs


def unread_count(organization_id, user_id) -> int:
    return notifications_for(organization_id, user_id, read=False).count()


def mark_read(organization_id, user_id, notification_id) -> bool:
    updated = notifications_for(organization_id, user_id).filter(pk=notification_id).update(read=True)
    return bool(updated)


def mark_all_read(organization_id, user_id) -> int:
    return notifications_for(organization_id, user_id, read=False).update(read=True)
