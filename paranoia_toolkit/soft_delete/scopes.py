"""
Scope installation for paranoid document types.

Runs once when a paranoid type is defined, and again whenever the type
overrides its field or scope name. Installs the timestamp field, the default
scope hiding deleted records, the named scope selecting them, the restore and
remove callback events, and the state predicates.

The first default scope always filters on the default field. A type with a
different field gets a second default scope on that field, so both filters
apply. Named scopes read the type's configuration when a query runs, so the
"deleted" scope and any custom one select by the field governing the type at
that moment; they replace the matching default condition when merged.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Type

from ..config import ParanoiaConfiguration, get_configuration

logger = logging.getLogger(__name__)

DEFAULT_PARANOID_FIELD = ParanoiaConfiguration.DEFAULT_PARANOID_FIELD
DEFAULT_PARANOID_SCOPE = ParanoiaConfiguration.DEFAULT_PARANOID_SCOPE


def active_scope(document_class: Type[Any]) -> Dict[str, Any]:
    """Default scope: the default deletion field is null or missing."""
    return {DEFAULT_PARANOID_FIELD: None}


def custom_active_scope(document_class: Type[Any]) -> Dict[str, Any]:
    """Additional default scope on the type's own field, once it is overridden."""
    return {document_class.paranoid_configuration.paranoid_field: None}


def deleted_scope(document_class: Type[Any]) -> Dict[str, Any]:
    """Named scope: the paranoid field holds a value."""
    return {document_class.paranoid_configuration.paranoid_field: {"$ne": None}}


def _is_destroyed(document: Any) -> bool:
    return bool(document.is_destroyed())


def install_paranoia(document_class: Type[Any]) -> None:
    """
    Make a document type paranoid.

    A subclass of a paranoid type inherits its parent's scopes and takes a
    copy of the parent's configuration; any other type snapshots the global
    configuration.

    Args:
        document_class: Document type being defined
    """
    if getattr(document_class, "paranoid", False):
        document_class.paranoid_configuration = (
            document_class.paranoid_configuration.copy_for_type()
        )
        return

    document_class.paranoid_configuration = get_configuration().copy_for_type()
    document_class.declare_field(
        document_class.paranoid_configuration.paranoid_field, datetime
    )
    document_class.paranoid = True
    document_class.default_scope(active_scope)
    document_class.define_scope(DEFAULT_PARANOID_SCOPE, deleted_scope)
    document_class.define_callbacks("restore", "remove")
    document_class.register_predicate("destroyed", _is_destroyed)
    document_class.register_predicate("deleted", _is_destroyed)

    paranoid_setup(document_class)
    logger.debug(
        f"Installed paranoia on {document_class.__name__} "
        f"(field={document_class.paranoid_configuration.paranoid_field}, "
        f"scope={document_class.paranoid_configuration.paranoid_scope})"
    )


def paranoid_setup(document_class: Type[Any]) -> None:
    """Install the field, default scope, predicate and named scope for overrides."""
    configuration = document_class.paranoid_configuration

    if configuration.paranoid_field != DEFAULT_PARANOID_FIELD:
        document_class.declare_field(configuration.paranoid_field, datetime)
        if custom_active_scope not in document_class.default_scopes():
            document_class.default_scope(custom_active_scope)
        document_class.register_predicate(configuration.paranoid_scope, _is_destroyed)

    if configuration.paranoid_scope != DEFAULT_PARANOID_SCOPE:
        document_class.define_scope(configuration.paranoid_scope, deleted_scope)


def set_paranoid_field(document_class: Type[Any], paranoid_field: str) -> None:
    """
    Use a different timestamp field for one type.

    Example:
        >>> set_paranoid_field(Person, "archived_at")
    """
    document_class.paranoid_configuration.paranoid_field = paranoid_field
    paranoid_setup(document_class)


def set_paranoid_scope(document_class: Type[Any], paranoid_scope: str) -> None:
    """
    Use a different scope name for one type.

    If the field name is still the default, it becomes "<scope>_at".

    Example:
        >>> set_paranoid_scope(Person, "archived")  # field becomes archived_at
    """
    configuration = document_class.paranoid_configuration
    configuration.paranoid_scope = paranoid_scope
    if configuration.paranoid_field == DEFAULT_PARANOID_FIELD:
        configuration.paranoid_field = f"{paranoid_scope}_at"
    paranoid_setup(document_class)
