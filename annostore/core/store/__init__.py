"""
Core store module - the authoritative state of an annotation session.

This module provides the indexed, observable annotation store and the
entity, diff and event types it works with.
"""

from .store import AnnotationStore
from .model import Annotation, Body, BodyRef, Target
from .diff import Update, BodyUpdate, TargetUpdate, diff_annotations
from .events import ChangeEvent, ChangeSet, EventBus, ObserveOptions, Origin, StateSnapshot
from .errors import (
    AnnotationStoreError,
    BulkOverwriteError,
    DuplicateIdError,
    IntegrityViolationError,
    ReentrancyLimitError,
)
from .sanitize import sanitize

__all__ = [
    "AnnotationStore",
    "Annotation",
    "Body",
    "BodyRef",
    "Target",
    "Update",
    "BodyUpdate",
    "TargetUpdate",
    "diff_annotations",
    "ChangeEvent",
    "ChangeSet",
    "EventBus",
    "ObserveOptions",
    "Origin",
    "StateSnapshot",
    "AnnotationStoreError",
    "BulkOverwriteError",
    "DuplicateIdError",
    "IntegrityViolationError",
    "ReentrancyLimitError",
    "sanitize",
]
