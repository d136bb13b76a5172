"""Domain events primitives shared by every module.

Events are immutable dataclasses.  They travel through the transactional
outbox as JSON, so every event knows how to flatten itself into a payload
and how to be rebuilt from one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Dict, Type
from uuid import UUID, uuid4


@dataclass(frozen=True)
class DomainEvent:
    """Base domain event (immutable)."""

    aggregate_id: UUID
    event_id: UUID = field(default_factory=uuid4)
    occurred_on: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_name: str = field(init=False)

    registry: ClassVar[Dict[str, Type["DomainEvent"]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        DomainEvent.registry[cls.__name__] = cls

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_name", self.__class__.__name__)

    # ------------------------------------------------------------------
    # Outbox (de)serialization
    # ------------------------------------------------------------------

    def to_payload(self) -> Dict[str, Any]:
        """Flatten the event into JSON-compatible primitives."""
        return _normalize_for_json(asdict(self))

    @classmethod
    def from_payload(cls, event_name: str, payload: Dict[str, Any]) -> "DomainEvent":
        """Rebuild an event previously flattened with :meth:`to_payload`.

        Raises:
            KeyError: ``event_name`` is not a known event class.
        """
        event_cls = cls.registry[event_name]
        kwargs: Dict[str, Any] = {}
        for f in fields(event_cls):
            if not f.init or f.name not in payload:
                continue
            kwargs[f.name] = payload[f.name]
        kwargs["aggregate_id"] = UUID(str(kwargs["aggregate_id"]))
        if "event_id" in kwargs:
            kwargs["event_id"] = UUID(str(kwargs["event_id"]))
        if "occurred_on" in kwargs:
            kwargs["occurred_on"] = datetime.fromisoformat(kwargs["occurred_on"])
        return event_cls(**kwargs)


class DomainEventMixin:
    """Mixin for aggregate roots that collect domain events in memory."""

    _domain_events: list[DomainEvent]

    def add_domain_event(self, event: DomainEvent) -> None:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        self._domain_events.append(event)

    def clear_domain_events(self) -> None:
        if hasattr(self, "_domain_events"):
            self._domain_events.clear()

    @property
    def domain_events(self) -> list[DomainEvent]:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        return list(self._domain_events)


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value
