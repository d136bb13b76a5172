"""Signals recording every PreOrder status change in its history."""

from __future__ import annotations

from typing import Optional

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from modules.preorders.models import PreOrder, PreOrderStatusHistory

_TRANSIENT_ATTRS = ("_previous_status", "_status_change_notes", "_status_changed_by")


@receiver(pre_save, sender=PreOrder)
def _capture_previous_status(sender, instance: PreOrder, **kwargs) -> None:
    if instance._state.adding:
        instance._previous_status = None
        return
    instance._previous_status = (
        sender.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
    )


@receiver(post_save, sender=PreOrder)
def _create_status_history(sender, instance: PreOrder, created: bool, **kwargs) -> None:
    previous_status: Optional[str] = getattr(instance, "_previous_status", None)
    if created or previous_status != instance.status:
        notes = getattr(instance, "_status_change_notes", None)
        if notes is None:
            notes = "Pre-order created" if created else ""
        PreOrderStatusHistory.objects.create(
            pre_order=instance,
            old_status=previous_status,
            new_status=instance.status,
            notes=notes,
            changed_by=getattr(instance, "_status_changed_by", "") or "",
        )

    for attr in _TRANSIENT_ATTRS:
        if hasattr(instance, attr):
            delattr(instance, attr)
