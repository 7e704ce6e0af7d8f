"""
Field and association descriptors for documents.

Fields read and write the document's attribute dictionary. Associations
resolve their target type by class or by class name, so types may refer to
each other before both are defined.
"""

import re
from typing import Any, Dict, Optional, Tuple, Type, Union

from .exceptions import UnknownRelationError

DEPENDENT_OPTIONS: Tuple[Optional[str], ...] = (None, "destroy", "delete")

# Document types by class name, filled in as types are defined
_document_types: Dict[str, Type[Any]] = {}


def register_document_type(cls: Type[Any]) -> None:
    _document_types[cls.__name__] = cls


def resolve_document_type(target: Union[str, Type[Any]]) -> Type[Any]:
    if not isinstance(target, str):
        return target
    try:
        return _document_types[target]
    except KeyError:
        raise UnknownRelationError(f"No document type named '{target}'") from None


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Field:
    """A declared document attribute."""

    def __init__(self, type_: Optional[type] = None, default: Any = None):
        self.type = type_
        self.default = default
        self.name = ""

    def __set_name__(self, owner: Type[Any], name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: Type[Any]) -> Any:
        if instance is None:
            return self
        if self.name in instance.attributes:
            return instance.attributes[self.name]
        return self.default() if callable(self.default) else self.default

    def __set__(self, instance: Any, value: Any) -> None:
        instance.attributes[self.name] = value

    def __repr__(self) -> str:
        type_name = self.type.__name__ if self.type else "Any"
        return f"Field({self.name!r}, {type_name})"


class Relation:
    """Base class for associations between document types."""

    embedded = False
    many = True

    def __init__(
        self,
        target: Union[str, Type[Any]],
        foreign_key: Optional[str] = None,
        dependent: Optional[str] = None,
    ):
        if dependent not in DEPENDENT_OPTIONS:
            raise ValueError(
                f"dependent must be one of: {', '.join(str(o) for o in DEPENDENT_OPTIONS)}"
            )
        self.target = target
        self.foreign_key = foreign_key
        self.dependent = dependent
        self.name = ""

    def __set_name__(self, owner: Type[Any], name: str) -> None:
        self.name = name
        if self.foreign_key is None and not self.embedded:
            self.foreign_key = f"{snake_case(owner.__name__)}_id"

    def __get__(self, instance: Any, owner: Type[Any]) -> Any:
        if instance is None:
            return self
        return instance.related(self.name)

    @property
    def target_class(self) -> Type[Any]:
        return resolve_document_type(self.target)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.name!r}, "
            f"target={self.target!r}, dependent={self.dependent!r})"
        )


class HasMany(Relation):
    """Documents in another collection pointing back through a foreign key."""


class HasOne(Relation):
    """A single document in another collection pointing back through a foreign key."""

    many = False


class EmbedsMany(Relation):
    """Documents stored inside the owner's own document."""

    embedded = True
