"""
Soft delete mixin for documents.

Mixed into a document type, removing a document stamps it with a deletion
time instead of removing it. Default queries no longer return it, the
"deleted" scope does, and it can be restored later. Potentially incompatible
with unique indexes when a deleted and an active document share a key.

Usage:
    class Person(ParanoiaMixin, Document):
        name = Field(str)

    class Invoice(ParanoiaMixin, Document, paranoid_scope="archived"):
        ...  # stored in archived_at, queried through Invoice.named("archived")
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from ..config import ParanoiaConfiguration
from ..document.storage import Collection
from .scopes import install_paranoia, set_paranoid_field, set_paranoid_scope

if TYPE_CHECKING:
    from ..document.base import Document

    _MixinBase = Document
else:
    _MixinBase = object

logger = logging.getLogger(__name__)


class ParanoiaMixin(_MixinBase):
    """
    Mixin to add soft delete functionality to documents.

    Provides:
    - A timestamp field (deleted_at unless configured otherwise)
    - A default scope hiding deleted documents and a "deleted" scope
    - remove/destroy that soft delete, delete_hard/destroy_hard that purge
    - restore, optionally recursing into dependent associations
    - "restore" and "remove" callback events
    """

    paranoid_configuration: ClassVar[ParanoiaConfiguration]

    def __init_subclass__(
        cls,
        paranoid_field: Optional[str] = None,
        paranoid_scope: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        if paranoid_field is not None:
            cls.set_paranoid_field(paranoid_field)
        if paranoid_scope is not None:
            cls.set_paranoid_scope(paranoid_scope)

    @classmethod
    def _setup_type(cls) -> None:
        super()._setup_type()
        install_paranoia(cls)

    @classmethod
    def set_paranoid_field(cls, paranoid_field: str) -> None:
        """Store this type's deletion timestamp in a different field."""
        set_paranoid_field(cls, paranoid_field)

    @classmethod
    def set_paranoid_scope(cls, paranoid_scope: str) -> None:
        """Expose this type's deleted documents under a different scope name."""
        set_paranoid_scope(cls, paranoid_scope)

    @property
    def paranoid_path(self) -> str:
        """Field path of the timestamp within the stored root document."""
        field = self.paranoid_configuration.paranoid_field
        if self.embedded:
            return f"{self.atomic_position}.{field}"
        return field

    def _paranoid_collection(self) -> Collection:
        return self.root.get_collection()

    def _paranoid_update(self, update: Any) -> int:
        selector = self.atomic_selector()
        updated = self._paranoid_collection().find(selector).update_one(update)
        if not updated:
            logger.warning(
                f"Paranoid update on {self.__class__.__name__} {self.id} "
                "matched no stored document"
            )
        return updated

    def remove(self, **options: Any) -> bool:
        """
        Soft delete the document.

        Cascades to dependent associations first, then sets the timestamp
        with a single $set. Runs the remove callbacks around the whole
        operation.

        Returns:
            True
        """
        return bool(self.run_callbacks("remove", self._soft_remove))

    def _soft_remove(self) -> bool:
        self._cascade()
        now = datetime.now(timezone.utc)
        # Stored dates keep millisecond precision
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        self.attributes[self.paranoid_configuration.paranoid_field] = now
        self._paranoid_update({"$set": {self.paranoid_path: now}})
        self._destroyed = True
        logger.debug(f"Soft deleted {self.__class__.__name__} {self.id}")
        return True

    def delete(self, **options: Any) -> bool:
        return self.remove(**options)

    def delete_hard(self) -> bool:
        """
        Delete the document from storage completely.

        No callbacks run and dependents are left alone.

        Returns:
            True
        """
        self._remove_from_storage()
        self._destroyed = True
        logger.debug(f"Hard deleted {self.__class__.__name__} {self.id}")
        return True

    def destroy_hard(self) -> bool:
        """
        Delete the document from storage completely, running the destroy and
        remove callbacks and purging dependent documents as well.

        Returns:
            True
        """

        def purge() -> bool:
            self._cascade_hard()
            return self.delete_hard()

        return bool(
            self.run_callbacks(
                "destroy",
                lambda: self.run_callbacks("remove", purge),
            )
        )

    def _cascade_hard(self) -> None:
        for name, relation in self.relations().items():
            if relation.dependent is None:
                continue
            for target in self.related_list(name, unscoped=True):
                if getattr(target, "paranoid", False):
                    if relation.dependent == "destroy":
                        target.destroy_hard()
                    else:
                        target.delete_hard()
                elif relation.dependent == "destroy":
                    target.destroy()
                else:
                    target.delete()

    def is_persisted(self) -> bool:
        """A soft deleted document is still persisted; only new records are not."""
        return not self.is_new_record()

    def is_destroyed(self) -> bool:
        """True after an in-process soft delete or while the timestamp is set."""
        field = self.paranoid_configuration.paranoid_field
        return bool(self._destroyed) or self.attributes.get(field) is not None

    def is_deleted(self) -> bool:
        return self.is_destroyed()

    def restore(self, recursive: bool = False, **options: Any) -> bool:
        """
        Restore a soft deleted document by unsetting its timestamp.

        Args:
            recursive: Also restore deleted documents of associations declared
                with dependent="destroy"

        Returns:
            True

        Note:
            Dependents are restored one after another with no rollback. If one
            fails, the error propagates and the rest are left deleted.
        """

        def operation() -> bool:
            field = self.paranoid_configuration.paranoid_field
            self._paranoid_update({"$unset": {self.paranoid_path: True}})
            self.attributes.pop(field, None)
            self._destroyed = False
            if recursive:
                self.restore_relations()
            logger.debug(f"Restored {self.__class__.__name__} {self.id}")
            return True

        return bool(self.run_callbacks("restore", operation))

    def restore_relations(self) -> None:
        """
        Recursively restore dependents of dependent="destroy" associations.

        Deleted dependents are restored with recursive=True. Active ones are not
        restored again, but their own dependents are still visited, so deleted
        documents further down are reached.
        """
        for name, relation in self.relations().items():
            if relation.dependent != "destroy":
                continue
            if not getattr(relation.target_class, "paranoid", False):
                continue
            for document in self.related_list(name, unscoped=True):
                if document.is_destroyed():
                    document.restore(recursive=True)
                else:
                    document.restore_relations()
