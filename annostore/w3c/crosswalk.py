"""
Crosswalk between W3C Web Annotation records and store entities.

Bodies without an id get one derived from the owning annotation id and the
body content, so importing the same record twice always yields the same body
ids, while equal bodies on different annotations never share one.
"""

import copy
import json
from datetime import date, datetime
from typing import Any, Dict, List, Union

from annostore.core.store.model import Annotation, Body, Target

W3C_CONTEXT = "http://www.w3.org/ns/anno.jsonld"

_BODY_FIELDS = ("id", "type", "purpose", "value", "created", "creator")
_ANNOTATION_FIELDS = ("@context", "type", "id", "body", "target")


def _json_default(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def hash_code(obj: Any) -> str:
    """
    Stable, non-cryptographic hash of a JSON-compatible object.

    32 bit ``h = 31 * h + c`` over the UTF-16 code units of the compact
    JSON encoding, returned as a signed decimal string. Key order is part
    of the input.
    """
    encoded = json.dumps(
        obj, separators=(",", ":"), ensure_ascii=False, default=_json_default
    ).encode("utf-16-le")

    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF

    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


def _derive_body_id(
    annotation_id, w3c: Dict[str, Any], occurrences: Dict[str, int]
) -> str:
    # Repeats of an identical body within one annotation are numbered
    body_id = hash_code([annotation_id, w3c])
    seen = occurrences.get(body_id, 0)
    occurrences[body_id] = seen + 1
    if seen:
        return hash_code([annotation_id, w3c, seen])
    return body_id


def parse_w3c_bodies(
    body: Union[Dict[str, Any], List[Dict[str, Any]], None], annotation_id: str
) -> List[Body]:
    """
    Convert a W3C body (or list of bodies) to store bodies.

    Args:
        body: Single W3C body, list of bodies, or None
        annotation_id: Id of the annotation the bodies belong to

    Returns:
        List of bodies; attributes outside the core model go to ``extra``
    """
    if body is None:
        return []

    bodies = body if isinstance(body, list) else [body]

    parsed = []
    occurrences: Dict[str, int] = {}
    for w3c in bodies:
        body_id = w3c.get("id") or _derive_body_id(annotation_id, w3c, occurrences)
        creator = w3c.get("creator")
        parsed.append(
            Body(
                id=body_id,
                annotation=annotation_id,
                type=w3c.get("type"),
                purpose=w3c.get("purpose"),
                value=w3c.get("value"),
                created=w3c.get("created"),
                creator=copy.deepcopy(creator) if isinstance(creator, dict) else creator,
                extra={k: copy.deepcopy(v) for k, v in w3c.items() if k not in _BODY_FIELDS},
            )
        )
    return parsed


def serialize_w3c_bodies(bodies: List[Body]) -> List[Dict[str, Any]]:
    """Convert store bodies to W3C bodies, dropping ids and back-references."""
    serialized = []
    for body in bodies:
        w3c = body.to_dict()
        w3c.pop("annotation", None)
        w3c.pop("id", None)
        serialized.append(w3c)
    return serialized


def parse_w3c_target(target: Union[str, Dict[str, Any], List], annotation_id: str) -> Target:
    """Convert the first W3C target to a store target."""
    if isinstance(target, list):
        target = target[0] if target else {}
    if isinstance(target, str):
        target = {"source": target}

    return Target(
        annotation=annotation_id,
        selector=copy.deepcopy(target.get("selector")),
        extra={k: copy.deepcopy(v) for k, v in target.items() if k != "selector"},
    )


def parse_w3c_annotation(data: Dict[str, Any]) -> Annotation:
    """Convert a W3C annotation record to a store annotation."""
    annotation_id = data.get("id")

    return Annotation(
        id=annotation_id,
        bodies=parse_w3c_bodies(data.get("body"), annotation_id),
        target=parse_w3c_target(data.get("target", {}), annotation_id),
        extra={
            k: copy.deepcopy(v) for k, v in data.items() if k not in _ANNOTATION_FIELDS
        },
    )


def serialize_w3c_annotation(annotation: Annotation) -> Dict[str, Any]:
    """Convert a store annotation to a W3C annotation record."""
    target = annotation.target.to_dict() if annotation.target else {}
    target.pop("annotation", None)

    data = {"@context": W3C_CONTEXT, "type": "Annotation", "id": annotation.id}
    data.update(copy.deepcopy(annotation.extra))
    data["body"] = serialize_w3c_bodies(annotation.bodies or [])
    data["target"] = target
    return data
