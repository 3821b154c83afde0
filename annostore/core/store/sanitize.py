"""
Normalization of partial annotations.

Pure functions with no side effects, used by the store before anything
reaches the indices.
"""

import copy
import uuid
from dataclasses import replace
from typing import Callable, Optional

from .model import Annotation, Target

IdFactory = Callable[[], str]


def default_id_factory() -> str:
    """Fresh globally-unique annotation id."""
    return str(uuid.uuid4())


def sanitize(
    annotation: Annotation, id_factory: Optional[IdFactory] = None
) -> Annotation:
    """
    Turn a partial annotation into a complete, consistent one.

    - assigns an id from ``id_factory`` when none is set
    - defaults missing bodies to an empty list and a missing target to an
      empty target
    - stamps the annotation id onto every body and onto the target,
      overwriting whatever the caller put there

    The input is never modified; the result shares no mutable state with it.

    Args:
        annotation: Possibly incomplete annotation
        id_factory: Source of fresh ids, defaults to uuid4

    Returns:
        New, sanitized annotation
    """
    annotation_id = annotation.id
    if not annotation_id:
        annotation_id = (id_factory or default_id_factory)()

    bodies = [
        replace(copy.deepcopy(b), annotation=annotation_id)
        for b in annotation.bodies or []
    ]
    target = copy.deepcopy(annotation.target) if annotation.target else Target()
    target.annotation = annotation_id

    return Annotation(
        id=annotation_id,
        bodies=bodies,
        target=target,
        extra=copy.deepcopy(annotation.extra),
    )
