"""Abstract base models and the transactional outbox.

Provides:
- ``BaseModel``: UUIDv7 primary key + created_at / updated_at timestamps.
  UUIDv7 keys are time ordered, which the allocator relies on as the
  tie-breaker between commitments created in the same instant.
- ``SoftDeleteModel``: BaseModel with soft-delete via ``deleted_at``.
- ``OutboxEvent``: domain events persisted with the business rows that
  produced them and relayed to the in-process event bus after commit.
"""

from __future__ import annotations

from datetime import timedelta

import uuid6
from django.db import models
from django.utils import timezone


class BaseModel(models.Model):
    """Abstract base with UUIDv7 PK and timestamp bookkeeping."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid6.uuid7,
        editable=False,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs) -> None:
        """Ensure ``updated_at`` is refreshed even when ``update_fields`` is passed."""
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)


# ---------------------------------------------------------------------------
# Soft delete
# ---------------------------------------------------------------------------


class SoftDeleteQuerySet(models.QuerySet):
    def alive(self) -> SoftDeleteQuerySet:
        return self.filter(deleted_at__isnull=True)

    def dead(self) -> SoftDeleteQuerySet:
        return self.filter(deleted_at__isnull=False)

    def delete(self) -> tuple[int, dict[str, int]]:
        """Bulk soft-delete: sets ``deleted_at`` + ``updated_at``."""
        now = timezone.now()
        count = self.alive().update(deleted_at=now, updated_at=now)
        return count, {self.model._meta.label: count}

    def hard_delete(self) -> tuple[int, dict[str, int]]:
        return super().delete()


class SoftDeleteManager(models.Manager.from_queryset(SoftDeleteQuerySet)):
    """Unfiltered manager; call ``.alive()`` explicitly to hide deleted rows."""


class SoftDeleteModel(BaseModel):
    """Abstract model soft-deleted through a single ``deleted_at`` timestamp."""

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        default=None,
        db_index=True,
    )

    objects = SoftDeleteManager()

    class Meta:
        abstract = True

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def delete(self, using=None, keep_parents=False) -> tuple[int, dict[str, int]]:
        """Soft-delete this instance (no-op if already deleted)."""
        if self.is_deleted:
            return 0, {}
        self.deleted_at = timezone.now()
        self.save(update_fields=["deleted_at"])
        return 1, {self._meta.label: 1}

    def hard_delete(self, using=None, keep_parents=False) -> tuple[int, dict[str, int]]:
        return super().delete(using=using, keep_parents=keep_parents)


# ---------------------------------------------------------------------------
# Transactional Outbox
# ---------------------------------------------------------------------------


class EventStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PUBLISHED = "PUBLISHED", "Published"
    FAILED = "FAILED", "Failed"


class OutboxEventQuerySet(models.QuerySet):
    def due_for_relay(self, max_retries: int, grace: timedelta) -> OutboxEventQuerySet:
        """Events the after-commit hook did not deliver.

        ``PENDING`` rows younger than ``grace`` are left alone: their
        on-commit publish is most likely still running.
        """
        cutoff = timezone.now() - grace
        return self.filter(
            models.Q(status=EventStatus.PENDING, created_at__lt=cutoff)
            | models.Q(status=EventStatus.FAILED, retry_count__lt=max_retries)
        ).order_by("created_at")


class OutboxEvent(BaseModel):
    """Outbox row written in the same transaction as the business data.

    Workflow:
    1. A repository writes ``OutboxEvent`` rows inside ``transaction.atomic()``
       and registers an on-commit publish for them.
    2. After commit the rows are rebuilt into domain events and handed to
       the event bus.
    3. On success → ``mark_as_published()``.
    4. On failure → ``mark_as_failed(error)``; the ``core.relay_outbox_events``
       task retries until ``OUTBOX_MAX_RETRIES`` is reached.
    """

    event_type = models.CharField(max_length=100)
    payload = models.JSONField()
    aggregate_id = models.CharField(max_length=255)
    topic = models.CharField(max_length=100)
    status = models.CharField(
        max_length=20,
        choices=EventStatus.choices,
        default=EventStatus.PENDING,
    )
    processed_at = models.DateTimeField(null=True, blank=True, default=None)
    error_message = models.TextField(null=True, blank=True, default=None)  # noqa: DJ01
    retry_count = models.PositiveIntegerField(default=0)

    objects = OutboxEventQuerySet.as_manager()

    class Meta:
        db_table = "outbox_events"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["event_type"], name="outbox_event_type_idx"),
            models.Index(fields=["aggregate_id"], name="outbox_aggregate_id_idx"),
            models.Index(
                fields=["status", "created_at"],
                name="outbox_status_created_idx",
            ),
        ]

    def mark_as_published(self) -> None:
        self.status = EventStatus.PUBLISHED
        self.processed_at = timezone.now()
        self.error_message = None
        self.save(update_fields=["status", "processed_at", "error_message"])

    def mark_as_failed(self, error: str) -> None:
        self.status = EventStatus.FAILED
        self.error_message = error
        self.retry_count += 1
        self.save(update_fields=["status", "error_message", "retry_count"])

    def __str__(self) -> str:
        return f"{self.event_type} [{self.status}] ({self.aggregate_id})"
