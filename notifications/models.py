from django.conf import settings
from django.db import models


class Notification(models.Model):
    class Type(models.TextChoices):
        SUBMISSION_STATUS_CHANGE = "submission_status_change", "Submission status change"
        NEW_COMMENT = "new_comment", "New comment"
        SYSTEM = "system", "System"

    organization = models.ForeignKey("core.Organization", on_delete=models.CASCADE, related_name="notifications")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=40, choices=Type.choices, default=Type.SYSTEM)
    message = models.TextField()
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "organization", "read"], name="notif_user_org_read_idx"),
        ]

    def __str__(self):
        return f"{self.get_type_display()} for {self.user_id}"
