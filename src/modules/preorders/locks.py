"""Per-fruit-type mutual exclusion shared by every process.

``cache.add`` only writes when the key is absent, which on the Redis
backend is a single ``SET NX``.  The guard never waits: a held guard
raises ``AllocationInProgress`` straight away.
"""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from typing import Iterator

import structlog
from django.conf import settings
from django.core.cache import cache

from modules.preorders.exceptions import AllocationInProgress

logger = structlog.get_logger(__name__)

GUARD_KEY_TEMPLATE = "preorders:guard:fruit-type:{fruit_type_id}"


def guard_key(fruit_type_id: object) -> str:
    return GUARD_KEY_TEMPLATE.format(fruit_type_id=fruit_type_id)


@contextmanager
def fruit_type_guard(fruit_type_id: object, operation: str = "allocation") -> Iterator[str]:
    """Hold the fruit type's guard for the duration of the block.

    The key expires after ``PREORDER_GUARD_TIMEOUT_SECONDS`` so a crashed
    worker cannot block the fruit type forever.

    Raises:
        AllocationInProgress: another holder has the guard.
    """
    key = guard_key(fruit_type_id)
    token = secrets.token_hex(8)
    log = logger.bind(fruit_type_id=str(fruit_type_id), operation=operation)

    if not cache.add(key, token, timeout=settings.PREORDER_GUARD_TIMEOUT_SECONDS):
        log.warning("preorder.guard_busy")
        raise AllocationInProgress(
            f"Another allocation or receive is running for fruit type "
            f"{fruit_type_id}. Try again shortly."
        )

    log.debug("preorder.guard_acquired")
    try:
        yield token
    finally:
        # Only drop the key if it is still ours; it may have expired and
        # been taken over by another holder.
        if cache.get(key) == token:
            cache.delete(key)
        log.debug("preorder.guard_released")
