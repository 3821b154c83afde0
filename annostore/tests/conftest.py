"""
Test fixtures and utilities for annostore tests.

Provides reusable fixtures for stores, observers and test annotations.
"""

import itertools

import pytest
from unittest.mock import Mock

from annostore.config import default_config
from annostore.core.store import Annotation, AnnotationStore, Body, Target


@pytest.fixture
def config():
    """Default configuration with consistency checks after every mutation."""
    cfg = default_config()
    cfg.store.verify = True
    return cfg


@pytest.fixture
def id_factory():
    """Deterministic id source: gen-1, gen-2, ..."""
    counter = itertools.count(1)
    return lambda: f"gen-{next(counter)}"


@pytest.fixture
def store(config, id_factory):
    """Empty store."""
    return AnnotationStore(id_factory=id_factory, config=config)


@pytest.fixture
def observer(store):
    """Mock callback subscribed to every event of the store."""
    callback = Mock()
    store.observe(callback)
    return callback


def make_annotation(annotation_id, body_ids=(), source="img1", **extra):
    """Build an annotation with simple textual bodies."""
    return Annotation(
        id=annotation_id,
        bodies=[
            Body(id=b, type="TextualBody", value=f"value of {b}") for b in body_ids
        ],
        target=Target(selector={"type": "FragmentSelector", "value": "xywh=0,0,10,10"},
                      extra={"source": source}),
        extra=dict(extra),
    )


@pytest.fixture
def populated_store(store):
    """Store with two annotations: a1 (b1, b2) and a2 (b3)."""
    store.add_annotation(make_annotation("a1", ["b1", "b2"]))
    store.add_annotation(make_annotation("a2", ["b3"], source="img2"))
    return store


def snapshot(store):
    """Full, comparable dump of what a store holds."""
    return [a.to_dict() for a in store.all()]


def assert_consistent(store):
    """Assert both indices agree with the live annotations."""
    problems = store.check_consistency()
    assert not problems, f"Store is inconsistent: {problems}"

    annotations = store.all()
    assert store._index.annotation_ids() == [a.id for a in annotations]

    expected_bodies = {
        b.id: a.id for a in annotations for b in a.bodies
    }
    assert set(store._index.body_ids()) == set(expected_bodies)
    for body_id, owner in expected_bodies.items():
        assert store._index.owner_of(body_id) == owner
