"""Exceptions for document operations."""

from typing import Optional


class DocumentError(Exception):
    """Base exception for document operations."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        self.document_id = document_id
        super().__init__(message)


class DocumentNotFound(DocumentError):
    """Raised when a document cannot be located in its collection."""

    def __init__(self, document_type: str, document_id: str):
        super().__init__(
            f"{document_type} with id {document_id} was not found",
            document_id=document_id,
        )


class UnknownScopeError(DocumentError):
    """Raised when querying a named scope that was never defined."""

    def __init__(self, document_type: str, scope: str):
        self.scope = scope
        super().__init__(f"{document_type} has no scope named '{scope}'")


class UnknownPredicateError(DocumentError):
    """Raised when checking a state predicate that was never registered."""

    def __init__(self, document_type: str, predicate: str):
        self.predicate = predicate
        super().__init__(f"{document_type} has no predicate named '{predicate}'")


class UnknownCallbackEvent(DocumentError):
    """Raised when registering a handler for an undefined lifecycle event."""

    def __init__(self, event: str):
        self.event = event
        super().__init__(f"Callback event '{event}' is not defined")


class UnknownRelationError(DocumentError):
    """Raised when an association cannot be resolved."""

    def __init__(self, message: str):
        super().__init__(message)


class StorageNotInitialized(DocumentError):
    """Raised when a storage backend is used before initialize()."""

    def __init__(self, backend: str):
        super().__init__(f"{backend} not initialized. Call initialize() first.")


class DuplicateDocumentError(DocumentError):
    """Raised when inserting a document whose id is already stored."""

    def __init__(self, collection: str, document_id: str):
        super().__init__(
            f"Document {document_id} already exists in collection '{collection}'",
            document_id=document_id,
        )
