"""
Abstract base models and mixins
"""
import uuid
from django.db import models


class TimestampedModel(models.Model):
    """
    Abstract base class with created_at and updated_at timestamps
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class UUIDModel(models.Model):
    """
    Abstract base class with UUID primary key
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


class AppendOnlyModel(models.Model):
    """
    Abstract base for append-only records.

    Rows are written once. Updating through save() or deleting a single
    instance raises; bulk maintenance (marking rows processed, explicit
    resets) goes through queryset.update()/delete() in the owning service.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{type(self).__name__} rows are immutable once written")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{type(self).__name__} rows cannot be deleted individually")
