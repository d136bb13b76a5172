from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel


class Notification(BaseModel):
    """In-app (bell) notification for a single user."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    title = models.CharField(max_length=200)
    body = models.TextField(blank=True, default="")
    data = models.JSONField(default=dict, blank=True)
    read_at = models.DateTimeField(null=True, blank=True, default=None)

    class Meta:
        db_table = "notifications"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="notification_user_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.title} -> {self.user_id}"

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def mark_as_read(self) -> None:
        if self.is_read:
            return
        self.read_at = timezone.now()
        self.save(update_fields=["read_at"])
