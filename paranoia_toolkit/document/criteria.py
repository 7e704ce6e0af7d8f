"""Query criteria for document types."""

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Type

from .exceptions import DocumentNotFound

if TYPE_CHECKING:
    from .base import Document


def merge_selectors(*selectors: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge selectors left to right; later conditions on a key replace earlier ones."""
    merged: Dict[str, Any] = {}
    for selector in selectors:
        if selector:
            merged.update(selector)
    return merged


class Criteria:
    """
    A lazily evaluated query against a document type's collection.

    Unless unscoped, the type's default scopes are applied first and the
    criteria's own conditions are merged on top, so a condition on the same
    field replaces the default one. That is what lets the "deleted" scope
    select records the default scope hides.

    Example:
        >>> Person.all().where(name="Ada").first()
        >>> Person.named("deleted").count()
        >>> Person.unscoped().where(_id=person_id).first()
    """

    def __init__(
        self,
        document_class: Type["Document"],
        selector: Optional[Dict[str, Any]] = None,
        scoped: bool = True,
    ):
        self.document_class = document_class
        self._selector: Dict[str, Any] = dict(selector or {})
        self.scoped = scoped

    def _clone(self, selector: Dict[str, Any], scoped: bool) -> "Criteria":
        return Criteria(self.document_class, selector, scoped)

    def where(
        self, selector: Optional[Dict[str, Any]] = None, **conditions: Any
    ) -> "Criteria":
        """Add equality or operator conditions."""
        return self._clone(
            merge_selectors(self._selector, selector, conditions), self.scoped
        )

    def ne(self, **conditions: Any) -> "Criteria":
        """Add "not equal" conditions."""
        negated = {field: {"$ne": value} for field, value in conditions.items()}
        return self._clone(merge_selectors(self._selector, negated), self.scoped)

    def unscoped(self) -> "Criteria":
        """Drop the default scopes, keeping explicit conditions."""
        return self._clone(self._selector, scoped=False)

    @property
    def selector(self) -> Dict[str, Any]:
        """The selector sent to the collection."""
        if not self.scoped:
            return dict(self._selector)
        return merge_selectors(self.document_class.default_selector(), self._selector)

    def __iter__(self) -> Iterator["Document"]:
        view = self.document_class.get_collection().find(self.selector)
        for document in view:
            yield self.document_class.instantiate(document)

    def to_list(self) -> List["Document"]:
        return list(self)

    def first(self) -> Optional["Document"]:
        return next(iter(self), None)

    def count(self) -> int:
        return self.document_class.get_collection().find(self.selector).count()

    def exists(self) -> bool:
        return self.count() > 0

    def find(self, document_id: Any) -> "Document":
        """
        Load a single document by id.

        Raises:
            DocumentNotFound: If no document within this criteria has the id
        """
        document = self.where(_id=document_id).first()
        if document is None:
            raise DocumentNotFound(self.document_class.__name__, str(document_id))
        return document

    def __repr__(self) -> str:
        return (
            f"Criteria({self.document_class.__name__}, "
            f"selector={self.selector!r}, scoped={self.scoped})"
        )
