"""
Document base classes.

A document type declares its fields and associations as class attributes.
Root documents live in their own collection; embedded documents are stored
inside their parent and addressed by their position within the root.

Usage:
    class Comment(EmbeddedDocument):
        body = Field(str)

    class Post(Document):
        title = Field(str)
        comments = EmbedsMany("Comment", dependent="destroy")
        likes = HasMany("Like", foreign_key="post_id", dependent="delete")
"""

import logging
import uuid
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from mongomock.filtering import filter_applies

from .callbacks import CallbackRegistry, Handler
from .criteria import Criteria, merge_selectors
from .exceptions import (
    DocumentError,
    DocumentNotFound,
    UnknownPredicateError,
    UnknownRelationError,
    UnknownScopeError,
)
from .fields import Field, Relation, register_document_type, snake_case
from .storage import Collection, get_database

logger = logging.getLogger(__name__)

D = TypeVar("D", bound="Document")

ScopeFunction = Callable[[Type["Document"]], Dict[str, Any]]
Predicate = Callable[["Document"], bool]


class Document:
    """Base class for root documents stored in their own collection."""

    __collection__: ClassVar[Optional[str]] = None

    embedded: ClassVar[bool] = False
    paranoid: ClassVar[bool] = False

    _fields: ClassVar[Dict[str, Field]] = {}
    _relations: ClassVar[Dict[str, Relation]] = {}
    _default_scopes: ClassVar[List[ScopeFunction]] = []
    _scopes: ClassVar[Dict[str, ScopeFunction]] = {}
    _predicates: ClassVar[Dict[str, Predicate]] = {
        "new_record": lambda document: document.is_new_record(),
        "persisted": lambda document: document.is_persisted(),
        "destroyed": lambda document: document.is_destroyed(),
    }
    _callbacks: ClassVar[CallbackRegistry] = CallbackRegistry()
    _callbacks.define("save", "destroy")

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        # Each type gets its own registries, seeded from its parent
        cls._fields = dict(cls._fields)
        cls._relations = dict(cls._relations)
        cls._default_scopes = list(cls._default_scopes)
        cls._scopes = dict(cls._scopes)
        cls._predicates = dict(cls._predicates)
        cls._callbacks = cls._callbacks.copy()

        declared_hooks: List[Tuple[str, str, Handler]] = []
        for value in cls.__dict__.values():
            if isinstance(value, Field):
                cls._fields[value.name] = value
            elif isinstance(value, Relation):
                cls._relations[value.name] = value
            for kind, event in getattr(value, "__callbacks__", []):
                declared_hooks.append((kind, event, value))

        cls._setup_type()

        for kind, event, handler in declared_hooks:
            cls._callbacks.register(kind, event, handler)

        register_document_type(cls)

    @classmethod
    def _setup_type(cls) -> None:
        """Hook for mixins that install fields, scopes or events on a new type."""
        pass

    def __init__(self, **attributes: Any):
        self._init_state()
        document_id = attributes.pop("_id", None)
        alias = attributes.pop("id", None)
        if document_id is None:
            document_id = alias if alias is not None else uuid.uuid4().hex
        self.attributes["_id"] = document_id

        for name, value in attributes.items():
            relation = self._relations.get(name)
            if name in self._fields:
                setattr(self, name, value)
            elif relation is not None and relation.embedded:
                for child in value:
                    self.embed(name, child)
            else:
                raise TypeError(f"{self.__class__.__name__} has no field '{name}'")

    def _init_state(self) -> None:
        self.attributes: Dict[str, Any] = {}
        self._embedded: Dict[str, List["Document"]] = {
            name: [] for name, relation in self._relations.items() if relation.embedded
        }
        self._parent: Optional["Document"] = None
        self._relation_name: Optional[str] = None
        self._new_record = True
        self._destroyed = False

    # ------------------------------------------------------------------
    # Type level API

    @classmethod
    def collection_name(cls) -> str:
        return cls.__collection__ or f"{snake_case(cls.__name__)}s"

    @classmethod
    def get_collection(cls) -> Collection:
        if cls.embedded:
            raise TypeError(
                f"{cls.__name__} is embedded and has no collection of its own"
            )
        return get_database().collection(cls.collection_name())

    @classmethod
    def declare_field(cls, name: str, type_: Optional[type] = None) -> Field:
        """Declare a field after the class body has run."""
        existing = cls._fields.get(name)
        if existing is not None and cls.__dict__.get(name) is existing:
            return existing
        field = Field(type_)
        field.__set_name__(cls, name)
        setattr(cls, name, field)
        cls._fields[name] = field
        return field

    @classmethod
    def fields(cls) -> Dict[str, Field]:
        return dict(cls._fields)

    @classmethod
    def relations(cls) -> Dict[str, Relation]:
        return dict(cls._relations)

    @classmethod
    def default_scope(cls, scope: ScopeFunction) -> None:
        """Add a selector applied to every scoped query of this type."""
        cls._default_scopes.append(scope)

    @classmethod
    def default_scopes(cls) -> List[ScopeFunction]:
        return list(cls._default_scopes)

    @classmethod
    def define_scope(cls, name: str, scope: ScopeFunction) -> None:
        """Register a named scope, replacing any scope of the same name."""
        cls._scopes[name] = scope

    @classmethod
    def scope_names(cls) -> List[str]:
        return list(cls._scopes)

    @classmethod
    def default_selector(cls) -> Dict[str, Any]:
        return merge_selectors(*(scope(cls) for scope in cls._default_scopes))

    @classmethod
    def define_callbacks(cls, *events: str) -> None:
        cls._callbacks.define(*events)

    @classmethod
    def register_callback(cls, kind: str, event: str, handler: Handler) -> None:
        """
        Add a lifecycle handler.

        Args:
            kind: "before" or "after"
            event: Event name, e.g. "save", "destroy", "remove", "restore"
            handler: Called with the document
        """
        cls._callbacks.register(kind, event, handler)

    @classmethod
    def register_predicate(cls, name: str, predicate: Predicate) -> None:
        cls._predicates[name] = predicate

    @classmethod
    def predicate_names(cls) -> List[str]:
        return list(cls._predicates)

    @classmethod
    def all(cls) -> Criteria:
        return Criteria(cls)

    @classmethod
    def where(
        cls, selector: Optional[Dict[str, Any]] = None, **conditions: Any
    ) -> Criteria:
        return Criteria(cls).where(selector, **conditions)

    @classmethod
    def unscoped(cls) -> Criteria:
        return Criteria(cls, scoped=False)

    @classmethod
    def named(cls, name: str) -> Criteria:
        """
        Query through a named scope.

        Raises:
            UnknownScopeError: If no scope with that name was defined
        """
        scope = cls._scopes.get(name)
        if scope is None:
            raise UnknownScopeError(cls.__name__, name)
        return Criteria(cls, scope(cls))

    @classmethod
    def find(cls: Type[D], document_id: Any) -> D:
        return cls.all().find(document_id)  # type: ignore[return-value]

    @classmethod
    def create(cls: Type[D], **attributes: Any) -> D:
        document = cls(**attributes)
        document.save()
        return document

    @classmethod
    def instantiate(cls: Type[D], data: Dict[str, Any]) -> D:
        """Build a persisted document from stored data."""
        document = cls.__new__(cls)
        document._init_state()
        document._load(data)
        return document

    # ------------------------------------------------------------------
    # Identity and state

    @property
    def id(self) -> Any:
        return self.attributes["_id"]

    @property
    def root(self) -> "Document":
        document = self
        while document._parent is not None:
            document = document._parent
        return document

    @property
    def atomic_position(self) -> str:
        """Path of this document within its root, e.g. "comments.2"."""
        if self._parent is None or self._relation_name is None:
            return ""
        siblings = self._parent._embedded[self._relation_name]
        index = next(i for i, sibling in enumerate(siblings) if sibling is self)
        prefix = f"{self._parent.atomic_position}." if self._parent.embedded else ""
        return f"{prefix}{self._relation_name}.{index}"

    def atomic_selector(self) -> Dict[str, Any]:
        """Selector addressing the stored document holding this one."""
        if self.embedded:
            return self.root.atomic_selector()
        return {"_id": self.id}

    def is_new_record(self) -> bool:
        return self._new_record

    def is_destroyed(self) -> bool:
        return self._destroyed

    def is_persisted(self) -> bool:
        return not self.is_new_record() and not self.is_destroyed()

    def check(self, name: str) -> bool:
        """
        Evaluate a registered state predicate by name.

        Raises:
            UnknownPredicateError: If no predicate with that name exists
        """
        predicate = self._predicates.get(name)
        if predicate is None:
            raise UnknownPredicateError(self.__class__.__name__, name)
        return predicate(self)

    def run_callbacks(self, event: str, operation: Callable[[], Any]) -> Any:
        return self._callbacks.run(event, self, operation)

    # ------------------------------------------------------------------
    # Serialisation

    def to_document(self) -> Dict[str, Any]:
        document = dict(self.attributes)
        for name, children in self._embedded.items():
            document[name] = [child.to_document() for child in children]
        return document

    def _load(self, data: Dict[str, Any]) -> None:
        self.attributes = {
            key: value for key, value in data.items() if key not in self._embedded
        }
        for name in self._embedded:
            target = self._relations[name].target_class
            self._embedded[name] = []
            for child_data in data.get(name) or []:
                if child_data is None:
                    continue
                child = target.instantiate(child_data)
                child._parent = self
                child._relation_name = name
                self._embedded[name].append(child)
        self._new_record = False

    def _mark_persisted(self) -> None:
        self._new_record = False
        for children in self._embedded.values():
            for child in children:
                child._mark_persisted()

    # ------------------------------------------------------------------
    # Associations

    def _relation(self, name: str) -> Relation:
        relation = self._relations.get(name)
        if relation is None:
            raise UnknownRelationError(
                f"{self.__class__.__name__} has no association named '{name}'"
            )
        return relation

    def embed(self, name: str, child: D) -> D:
        """
        Append an embedded document to an EmbedsMany association.

        If the root is already stored, the child is pushed to it straight away
        and so has a stored position before anything addresses it.
        """
        if not self._relation(name).embedded:
            raise UnknownRelationError(f"Association '{name}' is not embedded")
        child._parent = self
        child._relation_name = name
        self._embedded[name].append(child)

        root = self.root
        if not root.is_new_record():
            prefix = f"{self.atomic_position}." if self.embedded else ""
            root.get_collection().find(root.atomic_selector()).update_one(
                {"$push": {f"{prefix}{name}": child.to_document()}}
            )
            child._mark_persisted()
        return child

    def related(
        self, name: str, unscoped: bool = False
    ) -> Union[List["Document"], "Document", None]:
        """
        Load the targets of an association.

        Args:
            name: Association name
            unscoped: Include documents hidden by the target's default scopes

        Returns:
            A list, or for HasOne a single document or None
        """
        relation = self._relation(name)
        target = relation.target_class

        if relation.embedded:
            children = list(self._embedded[name])
            if unscoped:
                return children
            selector = target.default_selector()
            return [
                child
                for child in children
                if filter_applies(selector, child.attributes)
            ]

        criteria = target.where({relation.foreign_key: self.id})
        if unscoped:
            criteria = criteria.unscoped()
        if relation.many:
            return criteria.to_list()
        return criteria.first()

    def related_list(self, name: str, unscoped: bool = False) -> List["Document"]:
        targets = self.related(name, unscoped=unscoped)
        if targets is None:
            return []
        if isinstance(targets, list):
            return targets
        return [targets]

    def _cascade(self) -> None:
        """Destroy or delete the targets of dependent associations."""
        for name, relation in self._relations.items():
            if relation.dependent is None:
                continue
            for target in self.related_list(name):
                if relation.dependent == "destroy":
                    target.destroy()
                else:
                    target.delete()

    # ------------------------------------------------------------------
    # Persistence

    def save(self) -> bool:
        return bool(self.run_callbacks("save", self._persist))

    def _persist(self) -> bool:
        if self.embedded:
            if self._parent is None:
                raise DocumentError(
                    f"Embedded {self.__class__.__name__} has no parent to save through",
                    document_id=str(self.id),
                )
            return self._parent._persist()

        collection = self.get_collection()
        if self.is_new_record():
            collection.insert_one(self.to_document())
        else:
            collection.find(self.atomic_selector()).replace_one(self.to_document())
        self._mark_persisted()
        return True

    def reload(self: D) -> D:
        """
        Re-read this document from storage, ignoring default scopes.

        Raises:
            DocumentNotFound: If the document is no longer stored
        """
        root = self.root
        stored = root.get_collection().find(root.atomic_selector()).first()
        data = stored
        if stored is not None and self.embedded:
            data = _dig(stored, self.atomic_position)
        if data is None:
            raise DocumentNotFound(self.__class__.__name__, str(self.id))
        self._load(data)
        self._destroyed = False
        return self

    def _remove_from_storage(self) -> None:
        if self.is_new_record():
            return
        if not self.embedded:
            self.get_collection().find(self.atomic_selector()).delete_one()
            return

        parent = self._parent
        if parent is None or self._relation_name is None:
            return
        prefix = f"{parent.atomic_position}." if parent.embedded else ""
        self.root.get_collection().find(self.atomic_selector()).update_one(
            {"$pull": {f"{prefix}{self._relation_name}": {"_id": self.id}}}
        )
        parent._embedded[self._relation_name] = [
            sibling
            for sibling in parent._embedded[self._relation_name]
            if sibling is not self
        ]

    def remove(self, **options: Any) -> bool:
        """Physically remove the document after cascading to dependents."""
        self._cascade()
        self._remove_from_storage()
        self._destroyed = True
        logger.debug(f"Removed {self.__class__.__name__} {self.id}")
        return True

    def delete(self, **options: Any) -> bool:
        return self.remove(**options)

    def destroy(self, **options: Any) -> bool:
        """Remove the document, running the destroy callbacks around it."""
        return bool(self.run_callbacks("destroy", lambda: self.remove(**options)))

    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self), self.id))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id}>"


class EmbeddedDocument(Document):
    """Base class for documents stored inside a parent document."""

    embedded = True


def _dig(document: Dict[str, Any], position: str) -> Optional[Dict[str, Any]]:
    """Follow a position such as "comments.2" into a stored document."""
    current: Any = document
    for part in position.split("."):
        if isinstance(current, list):
            index = int(part)
            current = current[index] if index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current
