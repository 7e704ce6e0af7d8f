"""
Storage backends for documents.

Provides abstract collection and database interfaces plus MongoDB, in-memory
and SQL implementations. Selectors and updates use the MongoDB shapes
throughout:

    {"deleted_at": None}                 field missing or null
    {"deleted_at": {"$ne": None}}        field present and not null
    {"$set": {"children.0.deleted_at": now}}
    {"$unset": {"deleted_at": True}}

Collections are never scoped: every document stored, deleted or not, is
visible here. Scoping is applied by the query layer.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import mongomock
from dateutil.parser import isoparse
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    UniqueConstraint,
    and_,
    create_engine,
    not_,
    or_,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, declarative_base, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from ..config import StorageBackend, StorageSettings
from .exceptions import DuplicateDocumentError, StorageNotInitialized

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URL = "mongodb://localhost:27017"
DEFAULT_SQL_URL = "sqlite:///:memory:"
DEFAULT_DATABASE_NAME = "paranoia"

DUPLICATE_KEY_ERRORS = (DuplicateKeyError, mongomock.DuplicateKeyError)

Base = declarative_base()


class DocumentRow(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model holding one stored document."""

    __tablename__ = "paranoia_documents"
    __table_args__ = (
        UniqueConstraint("collection", "document_id", name="uq_collection_document"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(100), nullable=False, index=True)
    document_id = Column(String(100), nullable=False, index=True)
    data = Column(JSON, nullable=False)


def _as_utc(value: Any) -> Any:
    """Attach UTC to naive datetimes; stored dates are always UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {key: _as_utc(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_as_utc(item) for item in value]
    return value


class View:
    """Handle on the documents of a collection matching a selector."""

    def __init__(self, collection: "Collection", selector: Dict[str, Any]):
        self.collection = collection
        self.selector = selector

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.collection.find_documents(self.selector))

    def first(self) -> Optional[Dict[str, Any]]:
        return next(iter(self), None)

    def count(self) -> int:
        return self.collection.count(self.selector)

    def update_one(self, update: Dict[str, Any]) -> int:
        """Apply a partial update to the first matching document."""
        return self.collection.update_one(self.selector, update)

    def replace_one(self, document: Dict[str, Any]) -> int:
        return self.collection.replace_one(self.selector, document)

    def delete_one(self) -> int:
        return self.collection.delete_one(self.selector)


class Collection(ABC):
    """Abstract base class for a named set of documents."""

    def __init__(self, name: str):
        self.name = name

    def find(self, selector: Optional[Dict[str, Any]] = None) -> View:
        """
        Select documents.

        Args:
            selector: MongoDB style query selector

        Returns:
            View supporting iteration, update_one and delete_one
        """
        return View(self, dict(selector or {}))

    def count(self, selector: Dict[str, Any]) -> int:
        return len(self.find_documents(selector))

    @abstractmethod
    def insert_one(self, document: Dict[str, Any]) -> None:
        """
        Store a new document.

        Args:
            document: Document with an "_id" key

        Raises:
            DuplicateDocumentError: If the id is already stored
        """
        pass

    @abstractmethod
    def find_documents(self, selector: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return copies of all documents matching selector, in insertion order."""
        pass

    @abstractmethod
    def update_one(self, selector: Dict[str, Any], update: Dict[str, Any]) -> int:
        """
        Apply an update to the first document matching selector.

        Returns:
            Number of documents matched (0 or 1)
        """
        pass

    @abstractmethod
    def replace_one(self, selector: Dict[str, Any], document: Dict[str, Any]) -> int:
        """Replace the first document matching selector."""
        pass

    @abstractmethod
    def delete_one(self, selector: Dict[str, Any]) -> int:
        """Physically remove the first document matching selector."""
        pass

    @abstractmethod
    def drop(self) -> None:
        """Remove every document in the collection."""
        pass


class Database(ABC):
    """Abstract base class for document storage backends."""

    def initialize(self) -> None:
        """Prepare the backend for use."""
        pass

    @abstractmethod
    def collection(self, name: str) -> Collection:
        """Get a collection by name."""
        pass

    @abstractmethod
    def drop(self) -> None:
        """Remove every collection."""
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass


class MongoCollection(Collection):
    """Collection delegating to a pymongo (or mongomock) collection."""

    def __init__(self, name: str, collection: Any):
        super().__init__(name)
        self._collection = collection

    def insert_one(self, document: Dict[str, Any]) -> None:
        try:
            self._collection.insert_one(dict(document))
        except DUPLICATE_KEY_ERRORS as e:
            raise DuplicateDocumentError(self.name, str(document["_id"])) from e

    def find_documents(self, selector: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [_as_utc(document) for document in self._collection.find(selector)]

    def count(self, selector: Dict[str, Any]) -> int:
        return int(self._collection.count_documents(selector))

    def update_one(self, selector: Dict[str, Any], update: Dict[str, Any]) -> int:
        return int(self._collection.update_one(selector, update).matched_count)

    def replace_one(self, selector: Dict[str, Any], document: Dict[str, Any]) -> int:
        return int(self._collection.replace_one(selector, document).matched_count)

    def delete_one(self, selector: Dict[str, Any]) -> int:
        return int(self._collection.delete_one(selector).deleted_count)

    def drop(self) -> None:
        self._collection.drop()


class MongoDatabase(Database):
    """MongoDB storage backend for documents."""

    def __init__(
        self,
        url: str = DEFAULT_MONGO_URL,
        database_name: str = DEFAULT_DATABASE_NAME,
    ):
        """
        Initialize MongoDB document storage.

        Args:
            url: MongoDB connection string
            database_name: Database holding the collections
        """
        self.url = url
        self.database_name = database_name
        self.client: Optional[Any] = None

    def _connect(self) -> Any:
        client: MongoClient = MongoClient(
            self.url,
            tz_aware=True,
            serverSelectionTimeoutMS=8000,
            connectTimeoutMS=8000,
        )
        client.admin.command("ping")
        return client

    def initialize(self) -> None:
        """Connect and check the server answers."""
        try:
            self.client = self._connect()
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB at {self.url}: {e}")
            raise
        logger.debug(f"Initialized MongoDB document storage '{self.database_name}'")

    def collection(self, name: str) -> Collection:
        if self.client is None:
            raise StorageNotInitialized(self.__class__.__name__)
        return MongoCollection(name, self.client[self.database_name][name])

    def drop(self) -> None:
        if self.client is None:
            raise StorageNotInitialized(self.__class__.__name__)
        self.client.drop_database(self.database_name)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None


class MemoryDatabase(MongoDatabase):
    """In-memory storage backend on mongomock, mainly for tests and prototyping."""

    def __init__(self, database_name: str = DEFAULT_DATABASE_NAME):
        super().__init__("mongodb://memory", database_name)
        self.initialize()

    def _connect(self) -> Any:
        return mongomock.MongoClient(tz_aware=True)


def _utc_iso(value: datetime) -> str:
    return _as_utc(value).astimezone(timezone.utc).isoformat()


def _encode(value: Any) -> Any:
    """Make a document JSON serialisable."""
    if isinstance(value, datetime):
        return {"$date": _utc_iso(value)}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    """Reverse _encode."""
    if isinstance(value, dict):
        if set(value) == {"$date"}:
            return isoparse(value["$date"])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


def _json_path(path: str) -> Tuple[Any, ...]:
    return tuple(int(part) if part.isdigit() else part for part in path.split("."))


def _equals(path: str, value: Any) -> ColumnElement:
    """SQL condition: the value at path equals value (None also matches missing)."""
    if path == "_id":
        return DocumentRow.document_id == str(value)

    element = DocumentRow.data[_json_path(path)]
    if value is None:
        return element.as_string().is_(None)
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    if isinstance(value, str):
        return element.as_string() == value
    if isinstance(value, datetime):
        encoded = DocumentRow.data[_json_path(path) + ("$date",)]
        return encoded.as_string() == _utc_iso(value)
    raise ValueError(
        f"Cannot compare '{path}' with {type(value).__name__} in SQL storage"
    )


def _not_equals(path: str, value: Any) -> ColumnElement:
    if value is None or path == "_id":
        return not_(_equals(path, value))
    return or_(_equals(path, None), not_(_equals(path, value)))


def _condition(path: str, condition: Any) -> ColumnElement:
    """Translate one selector entry into a SQL condition."""
    is_operator = (
        isinstance(condition, dict)
        and bool(condition)
        and all(key.startswith("$") for key in condition)
    )
    if not is_operator:
        return _equals(path, condition)

    clauses = []
    for operator, operand in condition.items():
        if operator == "$ne":
            clauses.append(_not_equals(path, operand))
        elif operator == "$in":
            clauses.append(or_(*(_equals(path, item) for item in operand)))
        elif operator == "$nin":
            clauses.append(and_(*(_not_equals(path, item) for item in operand)))
        else:
            raise ValueError(f"Unsupported query operator for SQL storage: {operator}")
    return and_(*clauses)


def _replay_update(document: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply a MongoDB update document to one decoded row.

    The update runs against a throwaway mongomock collection, so SQL rows get
    the same $set/$unset/$pull semantics as the MongoDB backends.
    """
    scratch = mongomock.MongoClient(tz_aware=True).db.rows
    scratch.insert_one(document)
    scratch.update_one({"_id": document["_id"]}, update)
    return _as_utc(scratch.find_one({"_id": document["_id"]}))


class SQLCollection(Collection):
    """Collection stored as JSON rows in a SQL table."""

    def __init__(self, name: str, session_factory: Callable[[], Session]):
        super().__init__(name)
        self._session_factory = session_factory

    def _query(self, session: Session, selector: Dict[str, Any]) -> Query:
        query = session.query(DocumentRow).filter(DocumentRow.collection == self.name)
        for path, condition in selector.items():
            query = query.filter(_condition(path, condition))
        return query.order_by(DocumentRow.id)

    def insert_one(self, document: Dict[str, Any]) -> None:
        row = DocumentRow(
            collection=self.name,
            document_id=str(document["_id"]),
            data=_encode(document),
        )
        with self._session_factory() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateDocumentError(self.name, str(document["_id"])) from e

    def find_documents(self, selector: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            return [_decode(row.data) for row in self._query(session, selector)]

    def count(self, selector: Dict[str, Any]) -> int:
        with self._session_factory() as session:
            return int(self._query(session, selector).count())

    def update_one(self, selector: Dict[str, Any], update: Dict[str, Any]) -> int:
        with self._session_factory() as session:
            row = self._query(session, selector).first()
            if row is None:
                return 0
            row.data = _encode(_replay_update(_decode(row.data), update))
            session.commit()
        return 1

    def replace_one(self, selector: Dict[str, Any], document: Dict[str, Any]) -> int:
        with self._session_factory() as session:
            row = self._query(session, selector).first()
            if row is None:
                return 0
            row.data = _encode(document)
            session.commit()
        return 1

    def delete_one(self, selector: Dict[str, Any]) -> int:
        with self._session_factory() as session:
            row = self._query(session, selector).first()
            if row is None:
                return 0
            session.delete(row)
            session.commit()
        return 1

    def drop(self) -> None:
        with self._session_factory() as session:
            session.query(DocumentRow).filter(
                DocumentRow.collection == self.name
            ).delete()
            session.commit()


class SQLDatabase(Database):
    """SQL database storage backend for documents."""

    def __init__(self, connection_string: str):
        """
        Initialize SQL document storage.

        Args:
            connection_string: Database connection string
        """
        self.connection_string = connection_string
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    def initialize(self) -> None:
        """Initialize the database."""
        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        else:
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )

        Base.metadata.create_all(bind=self.engine)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        logger.debug(f"Initialized SQL document storage at {self.engine.url}")

    def collection(self, name: str) -> Collection:
        if self.SessionLocal is None:
            raise StorageNotInitialized(self.__class__.__name__)
        return SQLCollection(name, self.SessionLocal)

    def drop(self) -> None:
        if self.SessionLocal is None:
            raise StorageNotInitialized(self.__class__.__name__)
        with self.SessionLocal() as session:
            session.query(DocumentRow).delete()
            session.commit()

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None


def create_database(
    backend: str = StorageBackend.MEMORY.value, **kwargs: Any
) -> Database:
    """
    Factory function to create a document database.

    Args:
        backend: Type of storage backend ("memory", "mongo" or "sql")
        **kwargs: Backend-specific arguments (connection_string, database_name)

    Returns:
        Initialized database
    """
    connection_string = kwargs.get("connection_string")
    database_name = kwargs.get("database_name") or DEFAULT_DATABASE_NAME

    database: Database
    if backend == StorageBackend.MEMORY.value:
        return MemoryDatabase(database_name)
    elif backend == StorageBackend.MONGO.value:
        database = MongoDatabase(connection_string or DEFAULT_MONGO_URL, database_name)
    elif backend == StorageBackend.SQL.value:
        database = SQLDatabase(connection_string or DEFAULT_SQL_URL)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    database.initialize()
    return database


# Global database instance
_database: Optional[Database] = None


def get_database() -> Database:
    """
    Get the global document database, creating it from the environment.

    Returns:
        Global database
    """
    global _database

    if _database is None:
        settings = StorageSettings.from_env()
        _database = create_database(
            backend=settings.backend.value,
            connection_string=settings.database_url,
            database_name=settings.database_name,
        )

    return _database


def set_database(database: Optional[Database]) -> None:
    """
    Set the global document database.

    Args:
        database: Database to use, or None to recreate it lazily
    """
    global _database
    _database = database
