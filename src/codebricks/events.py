"""Event channel shared by the managers of one engine.

Delivery is synchronous with the mutation that publishes the event, in
subscription order (FIFO). Events are not persisted and are lost across
process restarts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for engine events."""


@dataclass(frozen=True)
class ScopeSwitched(Event):
    scope_id: str
    previous_scope_id: str | None = None


@dataclass(frozen=True)
class ScopeCreated(Event):
    scope_id: str


@dataclass(frozen=True)
class ScopeDeleted(Event):
    scope_id: str


@dataclass(frozen=True)
class FavoriteAdded(Event):
    scope_id: str
    item_path: str


@dataclass(frozen=True)
class FavoriteRemoved(Event):
    scope_id: str
    item_path: str


@dataclass(frozen=True)
class UsageUpdated(Event):
    scope_id: str
    item_path: str
    new_count: int


@dataclass(frozen=True)
class UsageCleared(Event):
    scope_id: str


@dataclass(frozen=True)
class TopicCreated(Event):
    scope_id: str
    path: str


@dataclass(frozen=True)
class TopicUpdated(Event):
    scope_id: str
    path: str


@dataclass(frozen=True)
class TopicDeleted(Event):
    scope_id: str
    path: str


@dataclass(frozen=True)
class TopicMoved(Event):
    scope_id: str
    old_path: str
    new_path: str


@dataclass(frozen=True)
class TopicsReordered(Event):
    scope_id: str
    parents: tuple[str | None, ...] = ()


@dataclass(frozen=True)
class ItemPathsChanged(Event):
    """Items under ``old_prefix`` now live under ``new_prefix``."""

    scope_id: str
    old_prefix: str
    new_prefix: str


@dataclass(frozen=True)
class LocationChanged(Event):
    old_path: str
    new_path: str


E = TypeVar("E", bound=Event)
Handler = Callable[[Any], None]


@dataclass
class EventChannel:
    """Observer list keyed by event type."""

    _handlers: list[tuple[type[Event], Handler, bool]] = field(default_factory=list)

    def subscribe(
        self, event_type: type[E], handler: Callable[[E], None], propagate: bool = False
    ) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (and its subclasses).

        Errors of a ``propagate`` handler are raised to the publisher once
        every other handler has run; those of the rest are only logged.

        Returns:
            A callable that removes the subscription.
        """
        entry = (event_type, handler, propagate)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        """Deliver ``event`` to every matching handler, in subscription order.

        A failing handler does not stop delivery to the rest.

        Raises:
            The first error of a ``propagate`` handler, after delivery.
        """
        failure: Exception | None = None
        for event_type, handler, propagate in list(self._handlers):
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception as e:
                if propagate and failure is None:
                    failure = e
                else:
                    log.exception("Event handler %r failed for %s", handler, type(event).__name__)
        if failure is not None:
            raise failure
