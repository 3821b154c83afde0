"""
Tests for AnnotationStore annotation operations.

Every test ends with a consistency check of both indices.
"""

import pytest
from unittest.mock import Mock

from annostore.core.store import (
    Annotation,
    Body,
    BulkOverwriteError,
    DuplicateIdError,
    ObserveOptions,
    Origin,
    Target,
)
from annostore.tests.conftest import assert_consistent, make_annotation, snapshot


def last_event(observer):
    return observer.call_args[0][0]


class TestAddAnnotation:
    """Adding single annotations."""

    def test_add_annotation(self, store, observer):
        """Test adding an annotation indexes it and its bodies."""
        added = store.add_annotation(make_annotation("a1", ["b1", "b2"]))

        assert added.id == "a1"
        assert [a.id for a in store.all()] == ["a1"]
        assert store.get_body("b1").annotation == "a1"
        assert store.get_body("b2").annotation == "a1"

        observer.assert_called_once()
        event = last_event(observer)
        assert event.origin == Origin.LOCAL
        assert [a.id for a in event.changes.created] == ["a1"]
        assert event.changes.updated == []
        assert event.changes.deleted == []
        assert [a.id for a in event.state] == ["a1"]
        assert_consistent(store)

    def test_add_assigns_generated_id(self, store):
        """Test that an annotation without id gets one from the id factory."""
        added = store.add_annotation(
            Annotation(bodies=[Body(id="b1")], target=Target(extra={"source": "img"}))
        )

        assert added.id == "gen-1"
        assert added.bodies[0].annotation == "gen-1"
        assert added.target.annotation == "gen-1"
        assert "gen-1" in store
        assert_consistent(store)

    def test_add_duplicate_id_fails(self, populated_store, observer):
        """Test that adding an existing id raises and changes nothing."""
        before = snapshot(populated_store)

        with pytest.raises(DuplicateIdError):
            populated_store.add_annotation(make_annotation("a1", ["b9"]))

        assert snapshot(populated_store) == before
        observer.assert_not_called()
        assert populated_store.get_body("b9") is None
        assert_consistent(populated_store)

    def test_add_with_foreign_body_id_fails(self, populated_store, observer):
        """Test that body ids must be unique across the whole store."""
        before = snapshot(populated_store)

        with pytest.raises(DuplicateIdError):
            populated_store.add_annotation(make_annotation("a3", ["b1"]))

        assert snapshot(populated_store) == before
        observer.assert_not_called()
        assert_consistent(populated_store)

    def test_extra_attributes_preserved(self, store):
        """Test opaque attributes survive storage verbatim."""
        store.add_annotation(make_annotation("a1", ["b1"], motivation="commenting"))

        stored = store.get_annotation("a1")
        assert stored.extra == {"motivation": "commenting"}
        assert stored.target.extra == {"source": "img1"}

    def test_concrete_scenario(self, store):
        """Add an annotation, then a body to it."""
        store.add_annotation(
            Annotation(
                id="a1",
                bodies=[Body(id="b1", type="TextualBody", value="hello")],
                target=Target(extra={"source": "img1"}),
            )
        )
        store.add_body(Body(id="b2", annotation="a1", value="world"))

        assert len(store.get_annotation("a1").bodies) == 2
        assert store.get_body("b2").annotation == "a1"
        assert_consistent(store)


class TestUpdateAnnotation:
    """Updating, replacing and upserting annotations."""

    def test_replace_annotation(self, populated_store, observer):
        """Test replacing an annotation with a new version."""
        replacement = make_annotation("a1", ["b1", "b4"])
        replacement.bodies[0].value = "changed"

        update = populated_store.replace_annotation(replacement)

        assert [b.id for b in update.bodies_created] == ["b4"]
        assert [b.id for b in update.bodies_deleted] == ["b2"]
        assert [u.new_body.value for u in update.bodies_updated] == ["changed"]
        assert update.target_updated is None

        assert populated_store.get_body("b2") is None
        assert populated_store.get_body("b4").annotation == "a1"

        event = last_event(observer)
        assert len(event.changes.updated) == 1
        assert event.changes.updated[0].new_value.id == "a1"
        assert_consistent(populated_store)

    def test_update_changes_id(self, populated_store, observer):
        """Test that an id change re-keys both indices."""
        update = populated_store.update_annotation(
            "a1", make_annotation("a1-renamed", ["b1", "b2"])
        )

        assert "a1" not in populated_store
        assert "a1-renamed" in populated_store
        assert populated_store.get_body("b1").annotation == "a1-renamed"
        assert populated_store.get_body("b2").annotation == "a1-renamed"
        assert populated_store._index.owner_of("b1") == "a1-renamed"
        assert update.is_rename

        event = last_event(observer)
        assert event.changes.updated[0].old_value.id == "a1"
        assert event.changes.updated[0].new_value.id == "a1-renamed"
        assert event.changes.created == []
        assert event.changes.deleted == []
        assert_consistent(populated_store)

    def test_rename_keeps_position(self, populated_store):
        """Test that a re-keyed annotation keeps its place in iteration order."""
        populated_store.update_annotation("a1", make_annotation("z", ["b1"]))

        assert [a.id for a in populated_store.all()] == ["z", "a2"]

    def test_update_without_id_keeps_id(self, populated_store):
        """Test that a patch without id does not rename the annotation."""
        patch = make_annotation(None, ["b1"], source="img-new")

        populated_store.update_annotation("a1", patch)

        stored = populated_store.get_annotation("a1")
        assert stored.target.extra["source"] == "img-new"
        assert [b.id for b in stored.bodies] == ["b1"]
        assert_consistent(populated_store)

    def test_rename_onto_existing_id_fails(self, populated_store, observer):
        """Test that renaming onto another annotation's id is rejected."""
        before = snapshot(populated_store)

        with pytest.raises(DuplicateIdError):
            populated_store.update_annotation("a1", make_annotation("a2", ["b1"]))

        assert snapshot(populated_store) == before
        observer.assert_not_called()

    def test_update_missing_is_soft_failure(self, populated_store, observer, caplog):
        """Test updating a missing annotation only logs a warning."""
        before = snapshot(populated_store)

        assert populated_store.update_annotation("nope", make_annotation("nope")) is None

        assert snapshot(populated_store) == before
        observer.assert_not_called()
        assert "does not exist" in caplog.text

    def test_upsert(self, populated_store, observer):
        """Test upsert routes to add or update."""
        added = populated_store.upsert_annotation(make_annotation("a3", ["b5"]))
        assert added.id == "a3"
        assert [a.id for a in last_event(observer).changes.created] == ["a3"]

        update = populated_store.upsert_annotation(make_annotation("a3", ["b6"]))
        assert [b.id for b in update.bodies_created] == ["b6"]
        event = last_event(observer)
        assert event.changes.created == []
        assert [b.id for b in event.changes.updated[0].bodies_created] == ["b6"]
        assert populated_store.get_body("b5") is None
        assert_consistent(populated_store)


class TestDeleteAnnotation:
    """Deleting and clearing."""

    def test_delete(self, populated_store, observer):
        """Test deletion purges the annotation and all its bodies."""
        populated_store.delete_annotation("a1")

        assert "a1" not in populated_store
        assert populated_store.get_body("b1") is None
        assert populated_store.get_body("b2") is None
        assert populated_store._index.owner_of("b1") is None

        event = last_event(observer)
        assert [a.id for a in event.changes.deleted] == ["a1"]
        assert [a.id for a in event.state] == ["a2"]
        assert_consistent(populated_store)

    def test_delete_by_object(self, populated_store):
        """Test delete accepts an annotation as well as an id."""
        populated_store.delete_annotation(populated_store.get_annotation("a2"))

        assert [a.id for a in populated_store.all()] == ["a1"]

    def test_delete_missing_is_soft_failure(self, populated_store, observer, caplog):
        """Test deleting a missing annotation only logs a warning."""
        assert populated_store.delete_annotation("nope") is None

        observer.assert_not_called()
        assert "missing annotation" in caplog.text
        assert len(populated_store) == 2

    def test_clear(self, populated_store, observer):
        """Test clear empties the store and lists everything as deleted."""
        populated_store.clear()

        event = last_event(observer)
        assert len(event.changes.deleted) == 2
        assert event.changes.created == []
        assert event.changes.updated == []
        assert event.state == []
        assert populated_store.all() == []
        assert_consistent(populated_store)

    def test_bulk_delete(self, populated_store, observer):
        """Test bulk delete emits one event and skips missing ids."""
        populated_store.bulk_delete_annotations(["a1", "nope", "a2"])

        observer.assert_called_once()
        assert [a.id for a in last_event(observer).changes.deleted] == ["a1", "a2"]
        assert len(populated_store) == 0
        assert_consistent(populated_store)

    def test_bulk_delete_nothing_emits_nothing(self, populated_store, observer):
        populated_store.bulk_delete_annotations(["nope"])

        observer.assert_not_called()


class TestBulkAnnotations:
    """Bulk add, update and upsert."""

    def test_bulk_add_replace(self, populated_store, observer):
        """Test replacing the whole state in one event."""
        new = [make_annotation("n1", ["nb1"]), make_annotation("n2", ["b1"])]

        populated_store.bulk_add_annotations(new, replace=True)

        observer.assert_called_once()
        event = last_event(observer)
        assert [a.id for a in event.changes.created] == ["n1", "n2"]
        assert [a.id for a in event.changes.deleted] == ["a1", "a2"]
        assert [a.id for a in populated_store.all()] == ["n1", "n2"]
        # b1 belonged to a1 before and may be reused once a1 is gone
        assert populated_store.get_body("b1").annotation == "n2"
        assert_consistent(populated_store)

    def test_bulk_add_no_replace(self, populated_store, observer):
        """Test appending without replacing."""
        populated_store.bulk_add_annotations(
            [make_annotation("n1"), make_annotation("n2")], replace=False
        )

        event = last_event(observer)
        assert [a.id for a in event.changes.created] == ["n1", "n2"]
        assert event.changes.deleted == []
        assert [a.id for a in populated_store.all()] == ["a1", "a2", "n1", "n2"]
        assert_consistent(populated_store)

    def test_bulk_add_collision_fails(self, populated_store, observer):
        """Test that colliding ids abort the whole bulk insert."""
        before = snapshot(populated_store)

        with pytest.raises(BulkOverwriteError) as excinfo:
            populated_store.bulk_add_annotations(
                [make_annotation("n1"), make_annotation("a2"), make_annotation("a1")],
                replace=False,
            )

        assert excinfo.value.ids == ["a2", "a1"]
        assert snapshot(populated_store) == before
        observer.assert_not_called()

    def test_bulk_add_duplicate_in_batch_fails(self, populated_store, observer):
        """Test a batch repeating a body id leaves the store untouched."""
        before = snapshot(populated_store)

        with pytest.raises(DuplicateIdError):
            populated_store.bulk_add_annotations(
                [make_annotation("n1", ["x"]), make_annotation("n2", ["x"])]
            )

        assert snapshot(populated_store) == before
        observer.assert_not_called()
        assert_consistent(populated_store)

    def test_bulk_update(self, populated_store, observer):
        """Test bulk update batches all diffs and skips missing ids."""
        populated_store.bulk_update_annotations(
            [
                make_annotation("a1", ["b1"]),
                make_annotation("nope"),
                make_annotation("a2", ["b3"], source="img-moved"),
            ]
        )

        observer.assert_called_once()
        updated = last_event(observer).changes.updated
        assert [u.new_value.id for u in updated] == ["a1", "a2"]
        assert [b.id for b in updated[0].bodies_deleted] == ["b2"]
        assert updated[1].target_updated.new_target.extra["source"] == "img-moved"
        assert_consistent(populated_store)

    def test_bulk_upsert(self, populated_store, observer):
        """Test bulk upsert creates and updates in a single event."""
        populated_store.bulk_upsert_annotations(
            [make_annotation("a1", ["b1"]), make_annotation("a3", ["b7"])]
        )

        observer.assert_called_once()
        event = last_event(observer)
        assert [a.id for a in event.changes.created] == ["a3"]
        assert [u.new_value.id for u in event.changes.updated] == ["a1"]
        assert [a.id for a in populated_store.all()] == ["a1", "a2", "a3"]
        assert_consistent(populated_store)

    def test_bulk_upsert_empty_emits_nothing(self, populated_store, observer):
        populated_store.bulk_upsert_annotations([])

        observer.assert_not_called()


class TestReads:
    """Read operations return copies and never emit."""

    def test_get_annotation_returns_copy(self, populated_store, observer):
        """Test mutating a returned annotation has no effect on the store."""
        annotation = populated_store.get_annotation("a1")
        annotation.bodies[0].value = "tampered"
        annotation.bodies.append(Body(id="rogue"))
        annotation.extra["x"] = 1
        annotation.target.extra["source"] = "tampered"

        again = populated_store.get_annotation("a1")
        assert again.bodies[0].value == "value of b1"
        assert [b.id for b in again.bodies] == ["b1", "b2"]
        assert again.extra == {}
        assert again.target.extra["source"] == "img1"
        observer.assert_not_called()

    def test_all_returns_copies(self, populated_store):
        annotations = populated_store.all()
        annotations[0].id = "tampered"
        annotations.pop()

        assert [a.id for a in populated_store.all()] == ["a1", "a2"]

    def test_get_body_returns_copy(self, populated_store):
        body = populated_store.get_body("b1")
        body.value = "tampered"

        assert populated_store.get_body("b1").value == "value of b1"

    def test_get_missing(self, populated_store, caplog):
        """Test reading missing entities returns None and warns."""
        assert populated_store.get_annotation("nope") is None
        assert populated_store.get_body("nope") is None
        assert "missing annotation" in caplog.text
        assert "missing body" in caplog.text

    def test_get_body_integrity_error(self, populated_store, caplog):
        """Test a dangling body index entry is reported as integrity error."""
        populated_store._index._bodies["ghost"] = "a1"

        assert populated_store.get_body("ghost") is None
        assert "Store integrity error" in caplog.text
        assert any(r.levelname == "ERROR" for r in caplog.records)

    def test_event_state_is_copy(self, store):
        """Test observers cannot reach into the store through events."""

        def vandal(event):
            for annotation in event.state:
                annotation.bodies.clear()

        store.observe(vandal)
        store.add_annotation(make_annotation("a1", ["b1"]))

        assert [b.id for b in store.get_annotation("a1").bodies] == ["b1"]
        assert_consistent(store)


class TestOrigin:
    """Origin tagging and origin filters."""

    def test_origin_filter(self, store):
        """Test an observer filtered to REMOTE ignores LOCAL changes."""
        remote = Mock()
        store.observe(remote, ObserveOptions(origin=Origin.REMOTE))

        store.add_annotation(make_annotation("a"), Origin.LOCAL)
        remote.assert_not_called()

        store.add_annotation(make_annotation("b"), Origin.REMOTE)
        remote.assert_called_once()
        event = remote.call_args[0][0]
        assert event.origin == Origin.REMOTE
        assert [a.id for a in event.changes.created] == ["b"]

    def test_unobserve(self, store, observer):
        store.unobserve(observer)
        store.add_annotation(make_annotation("a"))

        observer.assert_not_called()
