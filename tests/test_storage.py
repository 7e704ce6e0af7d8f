"""
Tests for document storage backends.

The same behaviour is checked against the in-memory (mongomock) and SQL
backends. The MongoDB backend is checked against a mocked client.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from paranoia_toolkit.document.exceptions import (
    DuplicateDocumentError,
    StorageNotInitialized,
)
from paranoia_toolkit.document.storage import (
    MemoryDatabase,
    MongoCollection,
    MongoDatabase,
    SQLDatabase,
    create_database,
    get_database,
    set_database,
)

# Millisecond precision, as stored dates are
NOW = datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", pytest.param("sql", marks=pytest.mark.sql)])
def database(request):
    """Create an initialized database for each backend."""
    database = create_database(backend=request.param)
    yield database
    database.close()


@pytest.fixture
def people(database):
    collection = database.collection("people")
    collection.insert_one({"_id": "p1", "name": "Ada", "age": 36})
    collection.insert_one({"_id": "p2", "name": "Grace", "age": 85})
    return collection


class TestCollections:
    """Test collection operations on every backend."""

    def test_find_all_in_insertion_order(self, people):
        assert [doc["_id"] for doc in people.find()] == ["p1", "p2"]
        assert people.find().count() == 2

    def test_find_by_selector(self, people):
        assert people.find({"name": "Grace"}).first()["_id"] == "p2"
        assert people.find({"name": "Linus"}).first() is None
        assert people.find({"age": 36}).count() == 1

    def test_none_matches_missing_field(self, people):
        people.find({"_id": "p2"}).update_one({"$set": {"deleted_at": NOW}})

        assert [doc["_id"] for doc in people.find({"deleted_at": None})] == ["p1"]
        assert [doc["_id"] for doc in people.find({"deleted_at": {"$ne": None}})] == [
            "p2"
        ]

    def test_operators(self, people):
        assert people.find({"name": {"$in": ["Ada", "Linus"]}}).count() == 1
        assert people.find({"name": {"$nin": ["Ada"]}}).first()["_id"] == "p2"
        assert people.find({"name": {"$ne": "Ada"}}).first()["_id"] == "p2"
        assert people.find({"_id": {"$in": ["p1", "p2"]}}).count() == 2

    def test_ne_value_includes_missing_field(self, people):
        people.insert_one({"_id": "p3"})

        assert [doc["_id"] for doc in people.find({"name": {"$ne": "Ada"}})] == [
            "p2",
            "p3",
        ]

    def test_update_one_set_and_unset(self, people):
        assert people.find({"_id": "p1"}).update_one({"$set": {"deleted_at": NOW}}) == 1
        assert people.find({"_id": "p1"}).first()["deleted_at"] == NOW
        assert people.find({"deleted_at": {"$ne": None}}).count() == 1

        people.find({"_id": "p1"}).update_one({"$unset": {"deleted_at": True}})
        assert "deleted_at" not in people.find({"_id": "p1"}).first()

    def test_update_one_without_match(self, people):
        assert people.find({"_id": "missing"}).update_one({"$set": {"x": 1}}) == 0

    def test_update_nested_position(self, database):
        collection = database.collection("posts")
        collection.insert_one({"_id": "post", "comments": [{"_id": "c1"}, {"_id": "c2"}]})

        collection.find({"_id": "post"}).update_one(
            {"$set": {"comments.1.deleted_at": NOW}}
        )

        stored = collection.find({"_id": "post"}).first()
        assert stored["comments"][1]["deleted_at"] == NOW
        assert "deleted_at" not in stored["comments"][0]
        assert collection.find({"comments.1.deleted_at": {"$ne": None}}).count() == 1
        assert collection.find({"comments.0.deleted_at": {"$ne": None}}).count() == 0

    def test_push_and_pull(self, database):
        collection = database.collection("posts")
        collection.insert_one({"_id": "post", "comments": [{"_id": "c1"}]})

        collection.find({"_id": "post"}).update_one(
            {"$push": {"comments": {"_id": "c2", "body": "Hi"}}}
        )
        collection.find({"_id": "post"}).update_one(
            {"$pull": {"comments": {"_id": "c1"}}}
        )

        stored = collection.find({"_id": "post"}).first()
        assert stored["comments"] == [{"_id": "c2", "body": "Hi"}]

    def test_replace_one(self, people):
        people.find({"_id": "p1"}).replace_one({"_id": "p1", "name": "Ada L."})
        assert people.find({"_id": "p1"}).first() == {"_id": "p1", "name": "Ada L."}

    def test_delete_one(self, people):
        assert people.find({"_id": "p1"}).delete_one() == 1
        assert people.find({"_id": "p1"}).delete_one() == 0
        assert [doc["_id"] for doc in people.find()] == ["p2"]

    def test_duplicate_id(self, people):
        with pytest.raises(DuplicateDocumentError) as exc:
            people.insert_one({"_id": "p1"})
        assert exc.value.document_id == "p1"

    def test_returned_documents_are_copies(self, people):
        document = people.find({"_id": "p1"}).first()
        document["name"] = "Changed"

        assert people.find({"_id": "p1"}).first()["name"] == "Ada"

    def test_collections_are_separate(self, database, people):
        assert database.collection("other").find().count() == 0

    def test_drop(self, database, people):
        people.drop()
        assert people.find().count() == 0

    def test_database_drop(self, database, people):
        database.drop()
        assert database.collection("people").find().count() == 0


class TestBackends:
    """Test backend specific behaviour."""

    def test_memory_databases_are_isolated(self):
        MemoryDatabase().collection("people").insert_one({"_id": "p1"})

        assert MemoryDatabase().collection("people").find().count() == 0

    def test_memory_collection_is_mongo_collection(self):
        assert isinstance(MemoryDatabase().collection("people"), MongoCollection)

    @pytest.mark.sql
    def test_sql_requires_initialize(self):
        database = SQLDatabase("sqlite:///:memory:")

        with pytest.raises(StorageNotInitialized):
            database.collection("people")

    @pytest.mark.sql
    def test_sql_datetime_round_trip(self):
        database = create_database(backend="sql")
        collection = database.collection("people")

        collection.insert_one({"_id": "p1", "deleted_at": NOW, "tags": ["a"]})

        stored = collection.find({"_id": "p1"}).first()
        assert stored["deleted_at"] == NOW
        assert stored["deleted_at"].tzinfo is not None
        assert stored["tags"] == ["a"]
        database.close()

    @pytest.mark.sql
    def test_sql_find_by_datetime(self):
        database = create_database(backend="sql")
        collection = database.collection("people")
        collection.insert_one({"_id": "p1", "deleted_at": NOW})
        collection.insert_one({"_id": "p2"})

        assert collection.find({"deleted_at": NOW}).first()["_id"] == "p1"
        database.close()

    @pytest.mark.sql
    def test_sql_rejects_unsupported_operator(self):
        database = create_database(backend="sql")
        collection = database.collection("people")

        with pytest.raises(ValueError) as exc:
            collection.find({"name": {"$regex": "A.*"}}).count()
        assert "$regex" in str(exc.value)
        database.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_database(backend="redis")


class TestMongoBackend:
    """Test the MongoDB backend against a mocked client."""

    def test_initialize_connects_and_pings(self):
        with patch("paranoia_toolkit.document.storage.MongoClient") as client_class:
            database = create_database(
                backend="mongo",
                connection_string="mongodb://db:27017",
                database_name="docs",
            )

        client_class.assert_called_once_with(
            "mongodb://db:27017",
            tz_aware=True,
            serverSelectionTimeoutMS=8000,
            connectTimeoutMS=8000,
        )
        client = client_class.return_value
        client.admin.command.assert_called_once_with("ping")

        collection = database.collection("people")
        collection.find({"_id": "p1"}).update_one({"$set": {"deleted_at": NOW}})

        client.__getitem__.assert_called_with("docs")
        client["docs"]["people"].update_one.assert_called_once_with(
            {"_id": "p1"}, {"$set": {"deleted_at": NOW}}
        )

    def test_connection_failure_propagates(self, caplog):
        with patch("paranoia_toolkit.document.storage.MongoClient") as client_class:
            client_class.return_value.admin.command.side_effect = (
                ServerSelectionTimeoutError("no servers")
            )

            with pytest.raises(ServerSelectionTimeoutError):
                create_database(backend="mongo")

        assert "Failed to connect to MongoDB" in caplog.text

    def test_requires_initialize(self):
        with pytest.raises(StorageNotInitialized):
            MongoDatabase().collection("people")


class TestGlobalDatabase:
    """Test the global database accessors."""

    def test_set_and_get(self):
        database = MemoryDatabase()
        set_database(database)
        assert get_database() is database

    def test_created_from_environment(self, monkeypatch):
        set_database(None)
        monkeypatch.setenv("PARANOIA_BACKEND", "sql")

        database = get_database()

        assert isinstance(database, SQLDatabase)
        assert get_database() is database
        database.close()
