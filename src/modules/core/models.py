"""Base abstract models and the shared audit trail.

Provides:
- ``BaseModel``: UUIDv7 primary key + created_at / updated_at timestamps.
- ``SoftDeleteModel``: Extends BaseModel with soft-delete via ``deleted_at``.
- ``AuditLog``: append-only record of every mutating lifecycle operation.

Notes:
- ``objects`` manager returns ALL records (unfiltered).  Use ``.alive()``
  to exclude soft-deleted rows.
- ``save()`` adds ``updated_at`` to ``update_fields`` so ``auto_now`` is
  honoured on partial saves.
"""

from __future__ import annotations

import uuid6
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

# ---------------------------------------------------------------------------
# BaseModel
# ---------------------------------------------------------------------------


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
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)


# ---------------------------------------------------------------------------
# Soft Delete infrastructure
# ---------------------------------------------------------------------------


class SoftDeleteQuerySet(models.QuerySet):
    def alive(self) -> SoftDeleteQuerySet:
        return self.filter(deleted_at__isnull=True)

    def dead(self) -> SoftDeleteQuerySet:
        return self.filter(deleted_at__isnull=False)


class SoftDeleteManager(models.Manager):
    """Manager that exposes ``.alive()`` / ``.dead()`` on the queryset."""

    def get_queryset(self) -> SoftDeleteQuerySet:
        return SoftDeleteQuerySet(self.model, using=self._db)

    def alive(self) -> SoftDeleteQuerySet:
        return self.get_queryset().alive()

    def dead(self) -> SoftDeleteQuerySet:
        return self.get_queryset().dead()


class SoftDeleteModel(BaseModel):
    """Abstract model with soft-delete via a single ``deleted_at`` timestamp.

    Orders are never physically removed: removal stamps ``deleted_at`` and
    every lifecycle lookup goes through ``alive()``.
    """

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


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class AuditAction(models.TextChoices):
    CREATE = "CREATE", "Create"
    UPDATE = "UPDATE", "Update"
    DELETE = "DELETE", "Delete"
    CANCEL = "CANCEL", "Cancel"
    REVERT = "REVERT", "Revert"
    SPLIT = "SPLIT", "Split"
    REASSIGN = "REASSIGN", "Reassign"
    COMPLETE = "COMPLETE", "Complete"
    LOCK = "LOCK", "Lock"
    UNLOCK = "UNLOCK", "Unlock"


class AuditLog(BaseModel):
    """Append-only audit record.

    Written in the **same transaction** as the mutation it describes, so a
    rolled-back operation leaves no audit row behind.  ``diff`` holds a
    JSON-serialisable before/after payload chosen by the caller.
    """

    table_name = models.CharField(max_length=64)
    record_id = models.CharField(max_length=64)
    action = models.CharField(max_length=16, choices=AuditAction.choices)
    diff = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    actor = models.CharField(max_length=64, blank=True, default="")
    occurred_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "audit_logs"
        ordering = ["occurred_at"]
        indexes = [
            models.Index(
                fields=["table_name", "record_id"],
                name="audit_table_record_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.table_name}:{self.record_id}"
