"""
Structured diffs between two states of an annotation.

Pure functions; the caller supplies both snapshots.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .model import Annotation, Body, Target


@dataclass
class BodyUpdate:
    old_body: Body
    new_body: Body

    def to_dict(self):
        return {"oldBody": self.old_body.to_dict(), "newBody": self.new_body.to_dict()}


@dataclass
class TargetUpdate:
    old_target: Target
    new_target: Target

    def to_dict(self):
        return {
            "oldTarget": self.old_target.to_dict(),
            "newTarget": self.new_target.to_dict(),
        }


@dataclass
class Update:
    """
    Difference between the old and new state of one annotation.

    ``old_value`` and ``new_value`` are always the full objects, so a
    consumer can tell an id rename from the two ids.
    """

    old_value: Annotation
    new_value: Annotation
    bodies_created: List[Body] = field(default_factory=list)
    bodies_deleted: List[Body] = field(default_factory=list)
    bodies_updated: List[BodyUpdate] = field(default_factory=list)
    target_updated: Optional[TargetUpdate] = None

    @property
    def is_rename(self) -> bool:
        return self.old_value.id != self.new_value.id

    def to_dict(self):
        """Convert to dictionary, omitting empty parts."""
        data = {
            "oldValue": self.old_value.to_dict(),
            "newValue": self.new_value.to_dict(),
        }
        if self.bodies_created:
            data["bodiesCreated"] = [b.to_dict() for b in self.bodies_created]
        if self.bodies_deleted:
            data["bodiesDeleted"] = [b.to_dict() for b in self.bodies_deleted]
        if self.bodies_updated:
            data["bodiesUpdated"] = [u.to_dict() for u in self.bodies_updated]
        if self.target_updated is not None:
            data["targetUpdated"] = self.target_updated.to_dict()
        return data


def diff_bodies(old_bodies: List[Body], new_bodies: List[Body]):
    """
    Compare two body sequences keyed on body id.

    Returns:
        Tuple of (created, deleted, updated)
    """
    old_by_id = {b.id: b for b in old_bodies}
    new_by_id = {b.id: b for b in new_bodies}

    created = [b for b in new_bodies if b.id not in old_by_id]
    deleted = [b for b in old_bodies if b.id not in new_by_id]
    updated = [
        BodyUpdate(old_body=old_by_id[b.id], new_body=b)
        for b in new_bodies
        if b.id in old_by_id and old_by_id[b.id] != b
    ]
    return created, deleted, updated


def diff_targets(old_target: Target, new_target: Target) -> Optional[TargetUpdate]:
    """Single-entry comparison of two targets."""
    if old_target != new_target:
        return TargetUpdate(old_target=old_target, new_target=new_target)
    return None


def diff_annotations(old_value: Annotation, new_value: Annotation) -> Update:
    """
    Compute the Update turning ``old_value`` into ``new_value``.

    Args:
        old_value: Annotation as currently stored
        new_value: Sanitized replacement, possibly under a new id

    Returns:
        Update carrying both full objects and the body/target changes
    """
    created, deleted, updated = diff_bodies(old_value.bodies, new_value.bodies)

    return Update(
        old_value=old_value,
        new_value=new_value,
        bodies_created=created,
        bodies_deleted=deleted,
        bodies_updated=updated,
        target_updated=diff_targets(old_value.target, new_value.target),
    )
