"""
Primary and secondary indices of the annotation store.

The primary index maps annotation ids to annotations, in insertion order.
The secondary index maps body ids to the id of the annotation holding them.
Every structural method keeps both maps in step.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .model import Annotation

logger = logging.getLogger(__name__)


class DualIndex:
    """
    Annotation index plus body index.

    Annotations stored here are treated as immutable: a mutation replaces
    the stored object, it never edits it. This makes ``copy()`` cheap,
    which the store uses to stage bulk operations.
    """

    def __init__(self):
        self._annotations: Dict[str, Annotation] = {}
        self._bodies: Dict[str, str] = {}

    def __contains__(self, annotation_id) -> bool:
        return annotation_id in self._annotations

    def __len__(self) -> int:
        return len(self._annotations)

    def get(self, annotation_id: str) -> Optional[Annotation]:
        return self._annotations.get(annotation_id)

    def owner_of(self, body_id: str) -> Optional[str]:
        """Id of the annotation holding the given body, if any."""
        return self._bodies.get(body_id)

    def values(self) -> List[Annotation]:
        return list(self._annotations.values())

    def annotation_ids(self) -> List[str]:
        return list(self._annotations.keys())

    def body_ids(self) -> List[str]:
        return list(self._bodies.keys())

    def copy(self) -> "DualIndex":
        """Shallow copy sharing the (immutable) stored annotations."""
        other = DualIndex()
        other._annotations = dict(self._annotations)
        other._bodies = dict(self._bodies)
        return other

    def find_body_conflicts(
        self, annotation: Annotation, owner_ids: Iterable[str] = ()
    ) -> List[str]:
        """
        Body ids of ``annotation`` that would break store-wide uniqueness.

        A body id conflicts when it appears twice in the annotation, or when
        it is already held by an annotation other than the ones listed in
        ``owner_ids`` (the annotations about to be replaced).
        """
        allowed = set(owner_ids)
        seen = set()
        conflicts = []
        for body_id in annotation.body_ids():
            owner = self._bodies.get(body_id)
            if body_id in seen or (owner is not None and owner not in allowed):
                conflicts.append(body_id)
            seen.add(body_id)
        return conflicts

    def insert(self, annotation: Annotation):
        """Add a new annotation and all of its bodies."""
        self._annotations[annotation.id] = annotation
        for body in annotation.bodies:
            self._bodies[body.id] = annotation.id

    def replace(self, old_id: str, annotation: Annotation):
        """
        Replace the annotation stored under ``old_id``.

        If the id changed, the entry is re-keyed in place, keeping its
        position in iteration order. Bodies of the old object are purged
        from the body index and those of the new one registered.
        """
        old = self._annotations[old_id]
        if old_id == annotation.id:
            self._annotations[old_id] = annotation
        else:
            self._annotations = {
                (annotation.id if k == old_id else k): (
                    annotation if k == old_id else v
                )
                for k, v in self._annotations.items()
            }

        for body in old.bodies:
            if self._bodies.get(body.id) == old_id:
                del self._bodies[body.id]
        for body in annotation.bodies:
            self._bodies[body.id] = annotation.id

    def remove(self, annotation_id: str) -> Optional[Annotation]:
        """Remove an annotation and purge its bodies. Returns the removed one."""
        existing = self._annotations.pop(annotation_id, None)
        if existing is not None:
            for body in existing.bodies:
                self._bodies.pop(body.id, None)
        return existing

    def clear(self) -> List[Annotation]:
        """Empty both maps, returning the annotations that were held."""
        removed = list(self._annotations.values())
        self._annotations.clear()
        self._bodies.clear()
        return removed

    def check_consistency(self) -> List[str]:
        """
        Verify that both maps agree with each other.

        Returns:
            List of human readable problems, empty if the index is sound
        """
        problems = []
        expected_bodies: Dict[str, str] = {}

        for key, annotation in self._annotations.items():
            if key != annotation.id:
                problems.append(f"annotation {annotation.id} stored under key {key}")
            if annotation.target is None or annotation.target.annotation != key:
                problems.append(f"target of {key} points elsewhere")
            for body in annotation.bodies:
                if body.annotation != key:
                    problems.append(
                        f"body {body.id} of {key} points to {body.annotation}"
                    )
                if body.id in expected_bodies:
                    problems.append(
                        f"body {body.id} held by both {expected_bodies[body.id]} and {key}"
                    )
                expected_bodies[body.id] = key

        for body_id, owner in self._bodies.items():
            if expected_bodies.get(body_id) != owner:
                problems.append(f"body index maps {body_id} to {owner}")
        for body_id in expected_bodies.keys() - self._bodies.keys():
            problems.append(f"body {body_id} missing from body index")

        return problems
