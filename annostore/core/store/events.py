"""
Event system for the annotation store.

Provides a decoupled way for the store to notify consumers (renderers,
persistence, collaboration layers) about changes without depending on them.

Dispatch is synchronous and re-entrant: an observer may mutate the store
from inside its callback. The store applies its index changes before
emitting, so the nested mutation sees a consistent state, and runs its own
complete emit before control returns to the outer dispatch.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .diff import Update
from .errors import ReentrancyLimitError
from .model import Annotation

logger = logging.getLogger(__name__)


class Origin(Enum):
    """Where a mutation came from. Used only to route notifications."""

    LOCAL = "LOCAL"
    REMOTE = "REMOTE"


CHANGE_KINDS = ("created", "updated", "deleted")


@dataclass
class ChangeSet:
    created: List[Annotation] = field(default_factory=list)
    updated: List[Update] = field(default_factory=list)
    deleted: List[Annotation] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted)

    def annotation_ids(self) -> Set[str]:
        """Ids of all annotations touched by this change set, old and new."""
        ids = {a.id for a in self.created} | {a.id for a in self.deleted}
        for update in self.updated:
            ids.add(update.old_value.id)
            ids.add(update.new_value.id)
        return ids

    def to_dict(self):
        return {
            "created": [a.to_dict() for a in self.created],
            "updated": [u.to_dict() for u in self.updated],
            "deleted": [a.to_dict() for a in self.deleted],
        }


class StateSnapshot(Sequence[Annotation]):
    """
    The store state at emit time, copied on first access.

    Holds references to the stored annotations, which the index never edits
    in place, so reading it later still yields the state of the moment it
    was taken. Each snapshot makes its own deep copy the first time it is
    read; observers that never look at the state pay nothing for it.
    """

    def __init__(self, annotations: Iterable[Annotation]):
        self._source = list(annotations)
        self._copies: Optional[List[Annotation]] = None

    @property
    def source(self) -> List[Annotation]:
        return self._source

    def _materialize(self) -> List[Annotation]:
        if self._copies is None:
            self._copies = copy.deepcopy(self._source)
        return self._copies

    def __getitem__(self, idx):
        return self._materialize()[idx]

    def __len__(self) -> int:
        return len(self._source)

    def __eq__(self, other) -> bool:
        if isinstance(other, (StateSnapshot, list, tuple)):
            return list(self) == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"StateSnapshot({self._materialize()!r})"


@dataclass
class ChangeEvent:
    """Notification delivered to observers after a mutation."""

    origin: Origin
    changes: ChangeSet
    state: Sequence[Annotation]

    def copy(self) -> "ChangeEvent":
        """Independent copy; the state is deep-copied lazily on first access."""
        if isinstance(self.state, StateSnapshot):
            source = self.state.source
        else:
            source = list(self.state)
        return ChangeEvent(
            origin=self.origin,
            changes=copy.deepcopy(self.changes),
            state=StateSnapshot(source),
        )

    def to_dict(self):
        """Wire shape of the event."""
        return {
            "origin": self.origin.value,
            "changes": self.changes.to_dict(),
            "state": [a.to_dict() for a in self.state],
        }


@dataclass
class ObserveOptions:
    """
    Filter for a subscription.

    Attributes:
        origin: Only deliver events with this origin
        kinds: Only deliver events carrying at least one change of these
            kinds ("created", "updated", "deleted")
        annotations: Only deliver events touching one of these annotation ids
    """

    origin: Optional[Origin] = None
    kinds: Optional[Iterable[str]] = None
    annotations: Optional[Iterable[str]] = None

    def __post_init__(self):
        if self.kinds is not None:
            self.kinds = frozenset(self.kinds)
            unknown = self.kinds - set(CHANGE_KINDS)
            if unknown:
                raise ValueError(f"Unknown change kinds: {sorted(unknown)}")
        if self.annotations is not None:
            self.annotations = frozenset(self.annotations)

    def accepts(self, event: ChangeEvent) -> bool:
        if self.origin is not None and event.origin != self.origin:
            return False

        if self.kinds is not None and not any(
            getattr(event.changes, kind) for kind in self.kinds
        ):
            return False

        if self.annotations is not None and not (
            self.annotations & event.changes.annotation_ids()
        ):
            return False

        return True


Callback = Callable[[ChangeEvent], None]


@dataclass
class Subscription:
    callback: Callback
    options: ObserveOptions


class EventBus:
    """
    Ordered observer registry with synchronous dispatch.

    Subscribers are notified in subscription order. Each dispatch iterates
    over the subscriptions present when it started, so (un)subscribing
    from inside a callback takes effect from the next event on.
    """

    def __init__(self, max_depth: int = 0, raise_errors: bool = False):
        """
        Initialize event bus.

        Args:
            max_depth: Maximum number of nested dispatches, 0 for no limit
            raise_errors: Propagate observer exceptions instead of logging them
        """
        self.max_depth = max_depth
        self.raise_errors = raise_errors
        self._subscriptions: List[Subscription] = []
        self._depth = 0

    @property
    def depth(self) -> int:
        """Number of dispatches currently on the stack."""
        return self._depth

    def __len__(self) -> int:
        return len(self._subscriptions)

    def check_depth(self):
        """Raise if starting another nested mutation would exceed the limit."""
        if self.max_depth and self._depth >= self.max_depth:
            raise ReentrancyLimitError(self._depth)

    def subscribe(self, callback: Callback, options: Optional[ObserveOptions] = None):
        """Register a callback, optionally filtered."""
        self._subscriptions.append(Subscription(callback, options or ObserveOptions()))

    def unsubscribe(self, callback: Callback) -> bool:
        """
        Remove the first subscription of the given callback.

        Returns:
            True if a subscription was removed
        """
        for idx, subscription in enumerate(self._subscriptions):
            if subscription.callback == callback:
                del self._subscriptions[idx]
                return True
        return False

    def emit(self, event: ChangeEvent):
        """
        Deliver an event to every subscriber whose filter accepts it.

        Each accepting subscriber receives its own copy of the event, so an
        observer editing it cannot change what later observers see.
        """
        subscriptions = list(self._subscriptions)
        logger.debug(
            "Dispatching %s event (%d created, %d updated, %d deleted) at depth %d",
            event.origin.value,
            len(event.changes.created),
            len(event.changes.updated),
            len(event.changes.deleted),
            self._depth,
        )

        self._depth += 1
        try:
            for subscription in subscriptions:
                if not subscription.options.accepts(event):
                    continue
                try:
                    subscription.callback(event.copy())
                except ReentrancyLimitError:
                    raise
                except Exception:
                    if self.raise_errors:
                        raise
                    # Log but don't crash on observer errors
                    logger.exception("Error in store observer %r", subscription.callback)
        finally:
            self._depth -= 1

    def clear(self):
        """Remove all subscriptions."""
        self._subscriptions.clear()
