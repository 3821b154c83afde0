"""
Annotation store.

The single authoritative, in-memory state of an annotation session.
UI-agnostic - renderers, drawing tools and persistence layers observe it
through change events rather than reaching into it.
"""

import copy
import dataclasses
import logging
from contextlib import contextmanager
from gettext import gettext as _
from typing import Iterable, List, Optional, Union

from easydict import EasyDict as edict

from annostore.config import load_config

from .diff import BodyUpdate, TargetUpdate, Update, diff_annotations
from .errors import BulkOverwriteError, DuplicateIdError, IntegrityViolationError
from .events import (
    Callback,
    ChangeEvent,
    ChangeSet,
    EventBus,
    ObserveOptions,
    Origin,
    StateSnapshot,
)
from .index import DualIndex
from .model import Annotation, Body, BodyRef, Target
from .sanitize import IdFactory, default_id_factory, sanitize

logger = logging.getLogger(__name__)

AnnotationOrId = Union[Annotation, str]
BodyIdentifier = Union[BodyRef, Body]


def _annotation_id(annotation_or_id: AnnotationOrId) -> str:
    if isinstance(annotation_or_id, str):
        return annotation_or_id
    return annotation_or_id.id


class AnnotationStore:
    """
    Indexed, observable store for annotations.

    This class handles:
    - CRUD over annotations, bodies and targets
    - Keeping the annotation index and the body index consistent
    - Computing an Update for every modification
    - Emitting one ChangeEvent per operation (bulk operations included)

    Every mutation validates first, then applies its changes to both
    indices, then emits. Hard failures raise before anything is changed;
    operations on missing entities log a warning and do nothing.

    The two source call shapes of ``update`` are exposed as
    ``update_annotation(annotation_id, annotation)`` and
    ``replace_annotation(annotation)``.
    """

    def __init__(
        self,
        id_factory: Optional[IdFactory] = None,
        config: Optional[edict] = None,
    ):
        """
        Initialize annotation store.

        Args:
            id_factory: Source of fresh annotation ids, defaults to uuid4
            config: Configuration tree, see ``annostore.config``
        """
        self.config = config if config is not None else load_config()
        store_cfg = self.config.store

        self.id_factory = id_factory or default_id_factory
        self.verify = bool(store_cfg.verify)

        self._index = DualIndex()

        # Observer registry
        self.events = EventBus(
            max_depth=int(store_cfg.max_dispatch_depth),
            raise_errors=bool(store_cfg.raise_observer_errors),
        )

    def __contains__(self, annotation_id) -> bool:
        return annotation_id in self._index

    def __len__(self) -> int:
        return len(self._index)

    # Observers

    def observe(self, callback: Callback, options: Optional[ObserveOptions] = None):
        """
        Subscribe to change events.

        Args:
            callback: Called synchronously with every accepted ChangeEvent
            options: Optional filter on origin, change kinds or annotation ids
        """
        self.events.subscribe(callback, options)

    def unobserve(self, callback: Callback):
        """Unsubscribe a callback registered with ``observe``."""
        self.events.unsubscribe(callback)

    # Annotations

    def add_annotation(
        self, annotation: Annotation, origin: Origin = Origin.LOCAL
    ) -> Annotation:
        """
        Add a new annotation.

        Args:
            annotation: Annotation to add, sanitized before insertion
            origin: Origin tag of the emitted event

        Returns:
            Copy of the stored annotation, with its id assigned

        Raises:
            DuplicateIdError: If the annotation id or one of its body ids
                is already in the store
        """
        self.events.check_depth()

        if annotation.id and annotation.id in self._index:
            raise DuplicateIdError("annotation", annotation.id)

        sanitized = self._sanitize(annotation)
        self._insert_one(self._index, sanitized)

        self._emit(origin, ChangeSet(created=[sanitized]))
        return copy.deepcopy(sanitized)

    def update_annotation(
        self,
        annotation_id: str,
        annotation: Annotation,
        origin: Origin = Origin.LOCAL,
    ) -> Optional[Update]:
        """
        Replace the annotation stored under ``annotation_id``.

        The replacement may carry a different id, in which case the
        annotation is re-keyed. A replacement without an id keeps
        ``annotation_id``.

        Returns:
            The emitted Update, or None if ``annotation_id`` does not exist
        """
        self.events.check_depth()

        if not annotation.id:
            annotation = dataclasses.replace(annotation, id=annotation_id)

        update = self._update_one(self._index, annotation_id, annotation)
        if update:
            self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def replace_annotation(
        self, annotation: Annotation, origin: Origin = Origin.LOCAL
    ) -> Optional[Update]:
        """Replace the stored annotation having the same id as ``annotation``."""
        self.events.check_depth()

        update = self._update_one(self._index, annotation.id, annotation)
        if update:
            self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def upsert_annotation(
        self, annotation: Annotation, origin: Origin = Origin.LOCAL
    ) -> Union[Annotation, Update, None]:
        """
        Replace the annotation if its id exists, add it otherwise.

        Returns:
            The Update of a replacement, or the stored copy of an addition
        """
        if annotation.id and annotation.id in self._index:
            return self.replace_annotation(annotation, origin)
        return self.add_annotation(annotation, origin)

    def bulk_add_annotations(
        self,
        annotations: Iterable[Annotation],
        replace: bool = True,
        origin: Origin = Origin.LOCAL,
    ):
        """
        Add many annotations, emitting a single event.

        Args:
            annotations: Annotations to add
            replace: Drop the current state first. The event then carries
                the prior state as ``deleted``.
            origin: Origin tag of the emitted event

        Raises:
            BulkOverwriteError: If ``replace`` is False and any id exists
            DuplicateIdError: If the batch itself repeats an annotation or
                body id
        """
        self.events.check_depth()

        annotations = list(annotations)

        if not replace:
            existing = [a.id for a in annotations if a.id and a.id in self._index]
            if existing:
                raise BulkOverwriteError(existing)

        sanitized = [self._sanitize(a) for a in annotations]

        deleted: List[Annotation] = []
        with self._transaction() as index:
            if replace:
                deleted = index.clear()
            for annotation in sanitized:
                if annotation.id in index:
                    raise DuplicateIdError("annotation", annotation.id)
                self._insert_one(index, annotation)

        self._emit(origin, ChangeSet(created=sanitized, deleted=deleted))

    def bulk_update_annotations(
        self, annotations: Iterable[Annotation], origin: Origin = Origin.LOCAL
    ):
        """Replace many annotations by id, emitting a single event."""
        self.events.check_depth()

        updated = []
        with self._transaction() as index:
            for annotation in annotations:
                update = self._update_one(index, annotation.id, annotation)
                if update:
                    updated.append(update)

        self._emit(origin, ChangeSet(updated=updated))

    def bulk_upsert_annotations(
        self, annotations: Iterable[Annotation], origin: Origin = Origin.LOCAL
    ):
        """Upsert many annotations, emitting a single event."""
        self.events.check_depth()

        created = []
        updated = []
        with self._transaction() as index:
            for annotation in annotations:
                if annotation.id and annotation.id in index:
                    updated.append(self._update_one(index, annotation.id, annotation))
                else:
                    sanitized = self._sanitize(annotation)
                    self._insert_one(index, sanitized)
                    created.append(sanitized)

        self._emit(origin, ChangeSet(created=created, updated=updated))

    def delete_annotation(
        self, annotation_or_id: AnnotationOrId, origin: Origin = Origin.LOCAL
    ) -> Optional[Annotation]:
        """
        Delete an annotation together with all of its bodies.

        Returns:
            The deleted annotation, or None if it did not exist
        """
        self.events.check_depth()

        deleted = self._delete_one(self._index, _annotation_id(annotation_or_id))
        if deleted:
            self._emit(origin, ChangeSet(deleted=[deleted]))
        return copy.deepcopy(deleted)

    def bulk_delete_annotations(
        self,
        annotations_or_ids: Iterable[AnnotationOrId],
        origin: Origin = Origin.LOCAL,
    ):
        """Delete many annotations, emitting a single event."""
        self.events.check_depth()

        deleted = []
        for arg in annotations_or_ids:
            existing = self._delete_one(self._index, _annotation_id(arg))
            if existing:
                deleted.append(existing)

        self._emit(origin, ChangeSet(deleted=deleted))

    def clear(self, origin: Origin = Origin.LOCAL):
        """Delete every annotation. The event lists them all as deleted."""
        self.events.check_depth()

        deleted = self._index.clear()
        self._emit(origin, ChangeSet(deleted=deleted))

    def all(self) -> List[Annotation]:
        """Copies of all annotations, in insertion order."""
        return copy.deepcopy(self._index.values())

    def get_annotation(self, annotation_id: str) -> Optional[Annotation]:
        """Copy of the annotation with the given id, or None."""
        annotation = self._index.get(annotation_id)
        if annotation is None:
            logger.warning(
                _("Attempt to retrieve missing annotation: {id}").format(
                    id=annotation_id
                )
            )
            return None
        return copy.deepcopy(annotation)

    # Bodies

    def add_body(self, body: Body, origin: Origin = Origin.LOCAL) -> Optional[Update]:
        """
        Append a body to the annotation named by its back-reference.

        Returns:
            The emitted Update, or None if the annotation does not exist

        Raises:
            DuplicateIdError: If the body id is already in the store
        """
        self.events.check_depth()

        old_value = self._index.get(body.annotation)
        if old_value is None:
            logger.warning(
                _("Attempt to add body to missing annotation: {id}").format(
                    id=body.annotation
                )
            )
            return None

        if self._index.owner_of(body.id) is not None:
            raise DuplicateIdError("body", body.id)

        new_body = copy.deepcopy(body)
        new_value = dataclasses.replace(old_value, bodies=[*old_value.bodies, new_body])
        self._index.replace(old_value.id, new_value)

        update = Update(old_value=old_value, new_value=new_value, bodies_created=[new_body])
        self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def update_body(
        self,
        old_body: BodyIdentifier,
        new_body: Body,
        origin: Origin = Origin.LOCAL,
    ) -> Optional[Update]:
        """
        Replace a body in place, possibly under a new body id.

        Args:
            old_body: Identifies the body to replace
            new_body: Replacement, must belong to the same annotation

        Raises:
            IntegrityViolationError: If the back-references differ
        """
        self.events.check_depth()

        update = self._update_body_one(self._index, old_body, new_body)
        if update:
            self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def bulk_update_bodies(self, bodies: Iterable[Body], origin: Origin = Origin.LOCAL):
        """Replace many bodies, each matched by its own id and annotation."""
        self.events.check_depth()

        updated = []
        with self._transaction() as index:
            for body in bodies:
                update = self._update_body_one(
                    index, BodyRef(id=body.id, annotation=body.annotation), body
                )
                if update:
                    updated.append(update)

        self._emit(origin, ChangeSet(updated=updated))

    def delete_body(
        self, body: BodyIdentifier, origin: Origin = Origin.LOCAL
    ) -> Optional[Update]:
        """Remove a body from its annotation."""
        self.events.check_depth()

        update = self._delete_body_one(self._index, body)
        if update:
            self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def bulk_delete_bodies(
        self, bodies: Iterable[BodyIdentifier], origin: Origin = Origin.LOCAL
    ):
        """Remove many bodies, emitting a single event."""
        self.events.check_depth()

        updated = []
        for body in bodies:
            update = self._delete_body_one(self._index, body)
            if update:
                updated.append(update)

        self._emit(origin, ChangeSet(updated=updated))

    def get_body(self, body_id: str) -> Optional[Body]:
        """Copy of the body with the given id, or None."""
        annotation_id = self._index.owner_of(body_id)
        if annotation_id is None:
            logger.warning(
                _("Attempt to retrieve missing body: {id}").format(id=body_id)
            )
            return None

        annotation = self._index.get(annotation_id)
        body = annotation.get_body(body_id) if annotation is not None else None
        if body is None:
            logger.error(
                _(
                    "Store integrity error: body {id} in index, but not in annotation {annotation}"
                ).format(id=body_id, annotation=annotation_id)
            )
            return None
        return copy.deepcopy(body)

    # Targets

    def update_target(
        self, target: Target, origin: Origin = Origin.LOCAL
    ) -> Optional[Update]:
        """
        Merge a (partial) target into the target of its annotation.

        Fields set on ``target`` override the stored ones.
        """
        self.events.check_depth()

        update = self._update_target_one(self._index, target)
        if update:
            self._emit(origin, ChangeSet(updated=[update]))
        return copy.deepcopy(update)

    def bulk_update_targets(
        self, targets: Iterable[Target], origin: Origin = Origin.LOCAL
    ):
        """Merge many targets, emitting a single event."""
        self.events.check_depth()

        updated = []
        for target in targets:
            update = self._update_target_one(self._index, target)
            if update:
                updated.append(update)

        self._emit(origin, ChangeSet(updated=updated))

    def check_consistency(self) -> List[str]:
        """Problems found in the indices, empty if the store is sound."""
        return self._index.check_consistency()

    # Internals

    def _sanitize(self, annotation: Annotation) -> Annotation:
        return sanitize(annotation, self.id_factory)

    @contextmanager
    def _transaction(self):
        """
        Stage changes on a copy of the index.

        The copy replaces the live index only if the block completes, so a
        failure halfway through a bulk operation leaves the store untouched.
        """
        staged = self._index.copy()
        yield staged
        self._index = staged

    def _emit(self, origin: Origin, changes: ChangeSet):
        if changes.is_empty():
            return

        if self.verify:
            for problem in self._index.check_consistency():
                logger.error(
                    _("Store integrity error: {problem}").format(problem=problem)
                )

        # The bus hands each accepting observer its own copy
        event = ChangeEvent(
            origin=origin, changes=changes, state=StateSnapshot(self._index.values())
        )
        self.events.emit(event)

    def _check_bodies(self, index: DualIndex, annotation: Annotation, owner_ids=()):
        conflicts = index.find_body_conflicts(annotation, owner_ids)
        if conflicts:
            raise DuplicateIdError("body", conflicts[0])

    def _insert_one(self, index: DualIndex, annotation: Annotation):
        self._check_bodies(index, annotation)
        index.insert(annotation)

    def _update_one(
        self, index: DualIndex, old_id: Optional[str], replacement: Annotation
    ) -> Optional[Update]:
        old_value = index.get(old_id) if old_id else None
        if old_value is None:
            logger.warning(
                _("Cannot update annotation {id} - does not exist").format(id=old_id)
            )
            return None

        new_value = self._sanitize(replacement)
        if new_value.id != old_id and new_value.id in index:
            raise DuplicateIdError("annotation", new_value.id)
        self._check_bodies(index, new_value, owner_ids=[old_id])

        update = diff_annotations(old_value, new_value)
        index.replace(old_id, new_value)
        return update

    def _delete_one(self, index: DualIndex, annotation_id: str) -> Optional[Annotation]:
        existing = index.remove(annotation_id)
        if existing is None:
            logger.warning(
                _("Attempt to delete missing annotation: {id}").format(id=annotation_id)
            )
        return existing

    def _update_body_one(
        self, index: DualIndex, old_body: BodyIdentifier, new_body: Body
    ) -> Optional[Update]:
        if old_body.annotation != new_body.annotation:
            raise IntegrityViolationError(old_body.annotation, new_body.annotation)

        old_value = index.get(old_body.annotation)
        if old_value is None:
            logger.warning(
                _("Attempt to update body on missing annotation: {id}").format(
                    id=old_body.annotation
                )
            )
            return None

        previous = old_value.get_body(old_body.id)
        if previous is None:
            logger.warning(
                _("Attempt to update missing body {id} in annotation {annotation}").format(
                    id=old_body.id, annotation=old_body.annotation
                )
            )
            return None

        if new_body.id != previous.id and index.owner_of(new_body.id) is not None:
            raise DuplicateIdError("body", new_body.id)

        replacement = copy.deepcopy(new_body)
        new_value = dataclasses.replace(
            old_value,
            bodies=[replacement if b.id == previous.id else b for b in old_value.bodies],
        )
        index.replace(old_value.id, new_value)

        return Update(
            old_value=old_value,
            new_value=new_value,
            bodies_updated=[BodyUpdate(old_body=previous, new_body=replacement)],
        )

    def _delete_body_one(
        self, index: DualIndex, body: BodyIdentifier
    ) -> Optional[Update]:
        old_value = index.get(body.annotation)
        if old_value is None:
            logger.warning(
                _("Attempt to delete body from missing annotation {id}").format(
                    id=body.annotation
                )
            )
            return None

        old_body = old_value.get_body(body.id)
        if old_body is None:
            logger.warning(
                _("Attempt to delete missing body {id} from annotation {annotation}").format(
                    id=body.id, annotation=body.annotation
                )
            )
            return None

        new_value = dataclasses.replace(
            old_value, bodies=[b for b in old_value.bodies if b.id != body.id]
        )
        index.replace(old_value.id, new_value)

        return Update(old_value=old_value, new_value=new_value, bodies_deleted=[old_body])

    def _update_target_one(self, index: DualIndex, target: Target) -> Optional[Update]:
        old_value = index.get(target.annotation)
        if old_value is None:
            logger.warning(
                _("Attempt to update target on missing annotation: {id}").format(
                    id=target.annotation
                )
            )
            return None

        new_target = old_value.target.merged(target)
        new_value = dataclasses.replace(old_value, target=new_target)
        index.replace(old_value.id, new_value)

        return Update(
            old_value=old_value,
            new_value=new_value,
            target_updated=TargetUpdate(old_target=old_value.target, new_target=new_target),
        )
