"""
Exceptions raised by the annotation store.

Only hard failures raise. Operations on missing entities are no-ops that
log a warning instead.
"""

from gettext import gettext as _
from typing import Iterable


class AnnotationStoreError(Exception):
    """Base class for store errors."""


class DuplicateIdError(AnnotationStoreError):
    """An annotation or body id is already taken."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            _("Cannot add {entity} {entity_id} - exists already").format(
                entity=entity, entity_id=entity_id
            )
        )


class BulkOverwriteError(AnnotationStoreError):
    """A non-replacing bulk insert would overwrite existing annotations."""

    def __init__(self, ids: Iterable[str]):
        self.ids = list(ids)
        super().__init__(
            _("Bulk insert would overwrite the following annotations: {ids}").format(
                ids=", ".join(self.ids)
            )
        )


class IntegrityViolationError(AnnotationStoreError):
    """A body update tried to move a body to another annotation."""

    def __init__(self, old_annotation: str, new_annotation: str):
        self.old_annotation = old_annotation
        self.new_annotation = new_annotation
        super().__init__(
            _(
                "Annotation integrity violation: annotation ID must be the same "
                "when updating bodies ({old} != {new})"
            ).format(old=old_annotation, new=new_annotation)
        )


class ReentrancyLimitError(AnnotationStoreError):
    """Observers kept mutating the store from inside their callbacks."""

    def __init__(self, depth: int):
        self.depth = depth
        super().__init__(
            _("Maximum nested dispatch depth exceeded ({depth})").format(depth=depth)
        )
