"""Unit tests for the per-fruit-type guard."""

from __future__ import annotations

import uuid

import pytest
from django.core.cache import cache

from modules.preorders.exceptions import AllocationInProgress
from modules.preorders.locks import fruit_type_guard, guard_key

pytestmark = pytest.mark.unit


def test_guard_is_released_after_block():
    fruit_type_id = uuid.uuid4()

    with fruit_type_guard(fruit_type_id) as token:
        assert cache.get(guard_key(fruit_type_id)) == token

    assert cache.get(guard_key(fruit_type_id)) is None


def test_held_guard_fails_fast():
    fruit_type_id = uuid.uuid4()

    with fruit_type_guard(fruit_type_id):
        with pytest.raises(AllocationInProgress):
            with fruit_type_guard(fruit_type_id, operation="receive"):
                pass


def test_guards_are_per_fruit_type():
    with fruit_type_guard(uuid.uuid4()):
        with fruit_type_guard(uuid.uuid4()):
            pass


def test_guard_released_when_block_raises():
    fruit_type_id = uuid.uuid4()

    with pytest.raises(RuntimeError):
        with fruit_type_guard(fruit_type_id):
            raise RuntimeError("boom")

    assert cache.get(guard_key(fruit_type_id)) is None


def test_guard_taken_over_after_expiry_is_not_deleted():
    fruit_type_id = uuid.uuid4()
    key = guard_key(fruit_type_id)

    with fruit_type_guard(fruit_type_id):
        # Simulates the key expiring and another holder taking it.
        cache.set(key, "someone-else")

    assert cache.get(key) == "someone-else"
