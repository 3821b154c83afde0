"""
W3C Web Annotation crosswalk.

Converts between the W3C interchange format and store entities. It never
touches a store; load the results with ``AnnotationStore.bulk_add_annotations``.
"""

from .crosswalk import (
    hash_code,
    parse_w3c_annotation,
    parse_w3c_bodies,
    parse_w3c_target,
    serialize_w3c_annotation,
    serialize_w3c_bodies,
)

__all__ = [
    "hash_code",
    "parse_w3c_annotation",
    "parse_w3c_bodies",
    "parse_w3c_target",
    "serialize_w3c_annotation",
    "serialize_w3c_bodies",
]
