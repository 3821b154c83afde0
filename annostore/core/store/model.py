"""
Entity model for the annotation store.

Contains data classes representing annotations and their sub-entities.
Every entity has a fixed set of known fields plus an ``extra`` map that
carries opaque attributes verbatim through every mutation.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Body:
    """A semantic payload (comment, tag, transcription...) of an annotation."""

    id: str
    annotation: Optional[str] = None
    type: Optional[str] = None
    purpose: Optional[str] = None
    value: Optional[Any] = None
    creator: Optional[Any] = None
    created: Optional[Any] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "annotation", "type", "purpose", "value", "creator", "created")

    def to_dict(self):
        """Convert to dictionary, flattening extra attributes."""
        data = copy.deepcopy(self.extra)
        for key in self._KNOWN:
            value = getattr(self, key)
            if value is not None:
                data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_dict(cls, data: dict):
        """Create from dictionary. Unknown keys end up in ``extra``."""
        known = {k: data.get(k) for k in cls._KNOWN}
        extra = {k: v for k, v in data.items() if k not in cls._KNOWN}
        return cls(**known, extra=copy.deepcopy(extra))


@dataclass
class BodyRef:
    """Identifies a body: its id and the id of the annotation holding it."""

    id: str
    annotation: str


@dataclass
class Target:
    """The subject an annotation refers to. The selector is opaque."""

    annotation: Optional[str] = None
    selector: Optional[Any] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("annotation", "selector")

    def merged(self, other: "Target") -> "Target":
        """
        Shallow merge of ``other`` into this target.

        Known fields set on ``other`` and all of its extra attributes
        override the ones of this target. Neither input is modified.
        """
        extra = copy.deepcopy(self.extra)
        extra.update(copy.deepcopy(other.extra))
        return Target(
            annotation=(
                other.annotation if other.annotation is not None else self.annotation
            ),
            selector=copy.deepcopy(
                other.selector if other.selector is not None else self.selector
            ),
            extra=extra,
        )

    def to_dict(self):
        """Convert to dictionary, flattening extra attributes."""
        data = copy.deepcopy(self.extra)
        for key in self._KNOWN:
            value = getattr(self, key)
            if value is not None:
                data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_dict(cls, data: dict):
        """Create from dictionary. Unknown keys end up in ``extra``."""
        extra = {k: v for k, v in data.items() if k not in cls._KNOWN}
        return cls(
            annotation=data.get("annotation"),
            selector=copy.deepcopy(data.get("selector")),
            extra=copy.deepcopy(extra),
        )


@dataclass
class Annotation:
    """
    Root entity: one target plus an ordered sequence of bodies.

    Objects held by the store are replaced, never modified, on mutation.
    """

    id: Optional[str] = None
    bodies: Optional[List[Body]] = None
    target: Optional[Target] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "bodies", "target")

    def get_body(self, body_id: str) -> Optional[Body]:
        """Find a body of this annotation by id."""
        for body in self.bodies or []:
            if body.id == body_id:
                return body
        return None

    def body_ids(self) -> List[str]:
        return [b.id for b in self.bodies or []]

    def to_dict(self):
        """Convert to dictionary for serialization."""
        data = copy.deepcopy(self.extra)
        data["id"] = self.id
        data["bodies"] = [b.to_dict() for b in self.bodies or []]
        data["target"] = self.target.to_dict() if self.target is not None else {}
        return data

    @classmethod
    def from_dict(cls, data: dict):
        """Create from dictionary. Unknown keys end up in ``extra``."""
        bodies = data.get("bodies")
        target = data.get("target")
        extra = {k: v for k, v in data.items() if k not in cls._KNOWN}
        return cls(
            id=data.get("id"),
            bodies=None if bodies is None else [Body.from_dict(b) for b in bodies],
            target=None if target is None else Target.from_dict(target),
            extra=copy.deepcopy(extra),
        )
