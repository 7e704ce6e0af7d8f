"""
Tests for the document layer.

Covers persistence, queries, embedded documents, associations and lifecycle
callbacks for documents without soft delete.
"""

import pytest

from paranoia_toolkit.document import (
    Document,
    DocumentError,
    DocumentNotFound,
    EmbeddedDocument,
    EmbedsMany,
    Field,
    HasMany,
    HasOne,
    UnknownCallbackEvent,
    UnknownPredicateError,
    UnknownRelationError,
    UnknownScopeError,
    callback,
)
from paranoia_toolkit.document.criteria import merge_selectors


class Shelf(Document):
    """Root document with referenced and embedded dependents."""

    label = Field(str)
    crates = HasMany("Crate", foreign_key="shelf_id", dependent="delete")
    plate = HasOne("Plate", foreign_key="shelf_id")
    bins = EmbedsMany("Bin", dependent="destroy")


class Crate(Document):
    shelf_id = Field(str)
    weight = Field(int, default=0)


class Plate(Document):
    shelf_id = Field(str)
    text = Field(str)


class Bin(EmbeddedDocument):
    color = Field(str)
    slots = EmbedsMany("Slot")


class Slot(EmbeddedDocument):
    size = Field(int)


class TestPersistence:
    """Test saving, loading and removing documents."""

    def test_create_and_find(self):
        shelf = Shelf.create(label="A")

        assert shelf.id
        assert not shelf.is_new_record()
        assert shelf.is_persisted()
        assert Shelf.find(shelf.id).label == "A"

    def test_new_document_is_not_persisted(self):
        shelf = Shelf(label="A")

        assert shelf.is_new_record()
        assert not shelf.is_persisted()
        assert Shelf.all().count() == 0

    def test_explicit_id(self):
        shelf = Shelf.create(_id="shelf-1", label="A")
        assert Shelf.find("shelf-1") == shelf

    def test_unknown_field(self):
        with pytest.raises(TypeError) as exc:
            Shelf(colour="red")
        assert "colour" in str(exc.value)

    def test_field_default(self):
        assert Crate().weight == 0
        assert "weight" not in Crate().attributes

    def test_find_missing(self):
        with pytest.raises(DocumentNotFound) as exc:
            Shelf.find("missing")
        assert exc.value.document_id == "missing"

    def test_falsy_id_is_kept(self):
        assert Crate(_id=0).id == 0

    def test_id_alias(self):
        assert Crate(id="c1").id == "c1"

        crate = Crate(_id="c1", id="c2")

        assert crate.id == "c1"
        assert "id" not in crate.attributes

    def test_save_updates_existing(self):
        shelf = Shelf.create(label="A")
        shelf.label = "B"
        shelf.save()

        assert Shelf.find(shelf.id).label == "B"
        assert Shelf.all().count() == 1

    def test_reload(self):
        shelf = Shelf.create(label="A")
        Shelf.get_collection().find({"_id": shelf.id}).update_one(
            {"$set": {"label": "Z"}}
        )

        assert shelf.reload().label == "Z"

    def test_reload_removed(self):
        shelf = Shelf.create(label="A")
        Shelf.get_collection().find({"_id": shelf.id}).delete_one()

        with pytest.raises(DocumentNotFound):
            shelf.reload()

    def test_destroy_removes_physically(self):
        shelf = Shelf.create(label="A")

        assert shelf.destroy() is True

        assert shelf.is_destroyed()
        assert not shelf.is_persisted()
        assert Shelf.unscoped().count() == 0

    def test_destroy_cascades_to_dependents(self):
        shelf = Shelf.create(label="A")
        Crate.create(shelf_id=shelf.id, weight=3)
        Crate.create(shelf_id=shelf.id, weight=4)
        Crate.create(shelf_id="elsewhere")

        shelf.destroy()

        assert Crate.all().count() == 1
        assert Crate.all().first().shelf_id == "elsewhere"

    def test_to_document(self):
        shelf = Shelf(label="A")
        shelf.embed("bins", Bin(color="red"))

        document = shelf.to_document()

        assert document["label"] == "A"
        assert document["bins"][0]["color"] == "red"


class TestQueries:
    """Test criteria and scopes."""

    def test_where_ne_and_count(self):
        Crate.create(weight=1)
        Crate.create(weight=2)
        Crate.create(weight=2)

        assert Crate.where(weight=2).count() == 2
        assert Crate.all().ne(weight=2).count() == 1
        assert Crate.where({"weight": {"$in": [1, 2]}}).exists()
        assert not Crate.where(weight=5).exists()

    def test_default_and_named_scopes(self):
        class Lamp(Document):
            lit = Field(bool)

        Lamp.default_scope(lambda cls: {"lit": True})
        Lamp.define_scope("dark", lambda cls: {"lit": False})
        Lamp.create(lit=True)
        Lamp.create(lit=False)

        assert Lamp.all().count() == 1
        assert Lamp.named("dark").count() == 1
        assert Lamp.unscoped().count() == 2
        assert Lamp.all().unscoped().where(lit=False).count() == 1
        assert Lamp.all().selector == {"lit": True}

    def test_merge_selectors_later_wins(self):
        merged = merge_selectors(
            {"deleted_at": None}, None, {"deleted_at": {"$ne": None}, "name": "Ada"}
        )

        assert merged == {"deleted_at": {"$ne": None}, "name": "Ada"}

    def test_unknown_scope(self):
        with pytest.raises(UnknownScopeError) as exc:
            Shelf.named("archived")
        assert exc.value.scope == "archived"

    def test_scopes_are_per_type(self):
        class Base(Document):
            pass

        class Derived(Base):
            pass

        Derived.define_scope("only_derived", lambda cls: {})

        assert "only_derived" in Derived.scope_names()
        assert "only_derived" not in Base.scope_names()


class TestEmbedded:
    """Test embedded documents."""

    def test_embedded_round_trip(self):
        shelf = Shelf(label="A")
        shelf.embed("bins", Bin(color="red"))
        shelf.embed("bins", Bin(color="blue"))
        shelf.save()

        loaded = Shelf.find(shelf.id)

        assert [b.color for b in loaded.bins] == ["red", "blue"]
        assert all(not b.is_new_record() for b in loaded.bins)
        assert loaded.bins[0].root is loaded

    def test_constructor_accepts_embedded(self):
        shelf = Shelf(label="A", bins=[Bin(color="red")])
        assert shelf.bins[0]._parent is shelf

    def test_atomic_position_and_selector(self):
        shelf = Shelf(label="A")
        shelf.embed("bins", Bin(color="red"))
        blue = shelf.embed("bins", Bin(color="blue"))
        slot = blue.embed("slots", Slot(size=2))

        assert blue.atomic_position == "bins.1"
        assert slot.atomic_position == "bins.1.slots.0"
        assert slot.atomic_selector() == {"_id": shelf.id}
        assert shelf.atomic_position == ""

    def test_destroy_embedded_pulls_from_root(self):
        shelf = Shelf(label="A")
        red = shelf.embed("bins", Bin(color="red"))
        shelf.embed("bins", Bin(color="blue"))
        shelf.save()

        red.destroy()

        stored = Shelf.get_collection().find({"_id": shelf.id}).first()
        assert [b["color"] for b in stored["bins"]] == ["blue"]
        assert [b.color for b in shelf.bins] == ["blue"]

    def test_save_through_parent(self):
        shelf = Shelf.create(label="A")
        red = shelf.embed("bins", Bin(color="red"))

        red.save()

        assert Shelf.find(shelf.id).bins[0].color == "red"
        assert not red.is_new_record()

    def test_embed_on_stored_root_is_pushed(self):
        shelf = Shelf.create(label="A")
        red = shelf.embed("bins", Bin(color="red"))
        red.embed("slots", Slot(size=3))

        stored = Shelf.get_collection().find({"_id": shelf.id}).first()
        assert stored["bins"][0]["color"] == "red"
        assert stored["bins"][0]["slots"][0]["size"] == 3
        assert not red.is_new_record()
        assert red.atomic_position == "bins.0"

    def test_embed_on_new_root_waits_for_save(self):
        shelf = Shelf(label="A")
        red = shelf.embed("bins", Bin(color="red"))

        assert red.is_new_record()
        assert Shelf.unscoped().count() == 0

    def test_save_without_parent(self):
        with pytest.raises(DocumentError):
            Bin(color="red").save()

    def test_reload_embedded(self):
        shelf = Shelf(label="A")
        red = shelf.embed("bins", Bin(color="red"))
        shelf.save()
        Shelf.get_collection().find({"_id": shelf.id}).update_one(
            {"$set": {"bins.0.color": "green"}}
        )

        assert red.reload().color == "green"

    def test_embedded_has_no_collection(self):
        with pytest.raises(TypeError):
            Bin.get_collection()


class TestAssociations:
    """Test association loading."""

    def test_has_many(self):
        shelf = Shelf.create(label="A")
        crate = Crate.create(shelf_id=shelf.id)

        assert shelf.crates == [crate]

    def test_has_one(self):
        shelf = Shelf.create(label="A")
        assert shelf.plate is None

        plate = Plate.create(shelf_id=shelf.id, text="A1")

        assert shelf.plate == plate
        assert shelf.related_list("plate") == [plate]

    def test_default_foreign_key(self):
        class Warehouse(Document):
            rooms = HasMany("Room")

        assert Warehouse.relations()["rooms"].foreign_key == "warehouse_id"

    def test_unknown_association(self):
        with pytest.raises(UnknownRelationError):
            Shelf.create(label="A").related("drawers")

    def test_unresolved_target(self):
        class Orphan(Document):
            parents = HasMany("NoSuchType")

        with pytest.raises(UnknownRelationError):
            Orphan.create().parents

    def test_invalid_dependent(self):
        with pytest.raises(ValueError):
            HasMany("Crate", dependent="nullify")


class TestCallbacks:
    """Test lifecycle callbacks."""

    def test_order(self):
        events = []

        class Ticket(Document):
            @callback("before", "save")
            def first(self):
                events.append("before_save")

            @callback("after", "save")
            def last(self):
                events.append("after_save")

        Ticket.register_callback("before", "save", lambda doc: events.append("extra"))

        Ticket.create()

        assert events == ["before_save", "extra", "after_save"]

    def test_failing_handler_aborts(self):
        class Ticket(Document):
            pass

        def refuse(document):
            raise RuntimeError("refused")

        after = []
        Ticket.register_callback("before", "save", refuse)
        Ticket.register_callback("after", "save", after.append)

        with pytest.raises(RuntimeError):
            Ticket.create()

        assert Ticket.unscoped().count() == 0
        assert after == []

    def test_destroy_callbacks(self):
        events = []

        class Ticket(Document):
            pass

        Ticket.register_callback("before", "destroy", lambda d: events.append("before"))
        Ticket.register_callback("after", "destroy", lambda d: events.append("after"))

        Ticket.create().destroy()

        assert events == ["before", "after"]

    def test_unknown_event(self):
        with pytest.raises(UnknownCallbackEvent):
            Shelf.register_callback("before", "restore", lambda doc: None)

    def test_invalid_kind(self):
        with pytest.raises(ValueError):
            Shelf.register_callback("around", "save", lambda doc: None)
        with pytest.raises(ValueError):
            callback("around", "save")

    def test_handlers_not_shared_with_parent(self):
        class Parent(Document):
            pass

        class Child(Parent):
            pass

        calls = []
        Child.register_callback("before", "save", calls.append)

        Parent.create()
        assert calls == []


class TestPredicates:
    """Test predicate dispatch."""

    def test_builtin_predicates(self):
        shelf = Shelf(label="A")

        assert shelf.check("new_record")
        assert not shelf.check("persisted")
        assert not shelf.check("destroyed")

    def test_unknown_predicate(self):
        with pytest.raises(UnknownPredicateError):
            Shelf().check("archived")
