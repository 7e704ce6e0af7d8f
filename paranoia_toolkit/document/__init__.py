"""
Document Module - records, queries and storage.

Provides document types with fields, embedded and referenced associations,
lifecycle callbacks, scoped queries and pluggable storage backends.
"""

from .base import Document, EmbeddedDocument
from .callbacks import CallbackRegistry, callback
from .criteria import Criteria
from .exceptions import (
    DocumentError,
    DocumentNotFound,
    DuplicateDocumentError,
    StorageNotInitialized,
    UnknownCallbackEvent,
    UnknownPredicateError,
    UnknownRelationError,
    UnknownScopeError,
)
from .fields import EmbedsMany, Field, HasMany, HasOne
from .storage import (
    Collection,
    Database,
    MemoryDatabase,
    MongoDatabase,
    SQLDatabase,
    create_database,
    get_database,
    set_database,
)

__all__ = [
    # Documents
    "Document",
    "EmbeddedDocument",
    "Field",
    "HasMany",
    "HasOne",
    "EmbedsMany",
    "Criteria",
    # Callbacks
    "CallbackRegistry",
    "callback",
    # Storage
    "Collection",
    "Database",
    "MemoryDatabase",
    "MongoDatabase",
    "SQLDatabase",
    "create_database",
    "get_database",
    "set_database",
    # Exceptions
    "DocumentError",
    "DocumentNotFound",
    "DuplicateDocumentError",
    "StorageNotInitialized",
    "UnknownCallbackEvent",
    "UnknownPredicateError",
    "UnknownRelationError",
    "UnknownScopeError",
]
