"""
Paranoia Toolkit - soft deletion for document-oriented records.

Instead of removing a document, a paranoid type stamps it with a deletion
time. Deleted documents drop out of default queries, remain reachable
through a named scope, and can be restored or purged later.

Quick Start
-----------
>>> from paranoia_toolkit import Document, Field, ParanoiaMixin
>>>
>>> class Person(ParanoiaMixin, Document):
...     name = Field(str)
>>>
>>> ada = Person.create(name="Ada")
>>> ada.destroy()
True
>>> Person.all().count(), Person.named("deleted").count()
(0, 1)
>>> ada.restore()
True

Configuration
-------------
>>> from paranoia_toolkit import configure
>>> configure(lambda c: setattr(c, "paranoid_field", "archived_at"))

Types take a copy of the configuration when they are defined and may
override it with ``paranoid_field=`` / ``paranoid_scope=`` class keywords.

Known Limitations
-----------------
* Unique indexes may collide between deleted and active documents.
* Recursive restores are not transactional.
"""

__version__ = "1.0.0"

from .config import (
    ParanoiaConfiguration,
    StorageBackend,
    StorageSettings,
    configure,
    get_configuration,
    reset_configuration,
    set_configuration,
)
from .document import (
    Document,
    EmbeddedDocument,
    EmbedsMany,
    Field,
    HasMany,
    HasOne,
    callback,
    create_database,
    get_database,
    set_database,
)
from .soft_delete import ParanoiaMixin

__all__ = [
    # Configuration
    "ParanoiaConfiguration",
    "StorageBackend",
    "StorageSettings",
    "configure",
    "get_configuration",
    "reset_configuration",
    "set_configuration",
    # Documents
    "Document",
    "EmbeddedDocument",
    "Field",
    "HasMany",
    "HasOne",
    "EmbedsMany",
    "callback",
    # Storage
    "create_database",
    "get_database",
    "set_database",
    # Soft Delete
    "ParanoiaMixin",
]
