"""Category aggregate.

Categories form a tree at most ``MAX_LEVEL`` levels below the roots.  The
aggregate holds only its own parent link; questions about children are
answered by the repository and passed in.
"""

from __future__ import annotations

import uuid

from ecommerce.core.errors import InvalidCategoryHierarchyError, ValidationError

from .aggregate import AggregateRoot
from .events import CategoryCreated, CategoryDeleted, CategoryUpdated

MAX_LEVEL = 5
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


def _check_text(name: str, description: str) -> None:
    if not name or not name.strip():
        raise ValidationError("category name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"category name cannot exceed {NAME_MAX_LENGTH} characters")
    if not description or not description.strip():
        raise ValidationError("category description is required")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"category description cannot exceed {DESCRIPTION_MAX_LENGTH} characters"
        )


class Category(AggregateRoot):
    def __init__(
        self,
        id: uuid.UUID | None = None,
        *,
        name: str,
        description: str,
        parent_id: uuid.UUID | None = None,
        level: int = 0,
        is_active: bool = True,
        **base,
    ) -> None:
        super().__init__(id, **base)
        self.name = name
        self.description = description
        self.parent_id = parent_id
        self.level = level
        self.is_active = is_active

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @classmethod
    def create(
        cls,
        *,
        name: str,
        description: str,
        parent: Category | None = None,
        correlation_id: str = "",
    ) -> Category:
        """Create a root category, or a child of *parent* one level below it."""
        _check_text(name, description)
        level = 0
        if parent is not None:
            if parent.level >= MAX_LEVEL:
                raise InvalidCategoryHierarchyError(
                    f"category hierarchy cannot exceed {MAX_LEVEL} levels"
                )
            level = parent.level + 1
        category = cls(
            name=name.strip(),
            description=description.strip(),
            parent_id=parent.id if parent is not None else None,
            level=level,
        )
        category._add_domain_event(CategoryCreated(
            aggregate_id=category.id,
            aggregate_version=category.version,
            correlation_id=correlation_id,
            name=category.name,
            description=category.description,
            parent_id=category.parent_id,
            level=category.level,
        ))
        return category

    def update(self, *, name: str, description: str, correlation_id: str = "") -> None:
        _check_text(name, description)
        self.name = name.strip()
        self.description = description.strip()
        self._changed(correlation_id)

    def activate(self, correlation_id: str = "") -> None:
        self.is_active = True
        self._changed(correlation_id)

    def deactivate(self, *, has_active_children: bool, correlation_id: str = "") -> None:
        if has_active_children:
            raise InvalidCategoryHierarchyError(
                "cannot deactivate a category that has active child categories"
            )
        self.is_active = False
        self._changed(correlation_id)

    def delete(self, *, has_children: bool, has_products: bool, correlation_id: str = "") -> None:
        if has_children:
            raise InvalidCategoryHierarchyError("cannot delete a category that has child categories")
        if has_products:
            raise InvalidCategoryHierarchyError("cannot delete a category that still has products")
        self._mark_deleted()
        self._add_domain_event(CategoryDeleted(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            parent_id=self.parent_id,
        ))

    def _changed(self, correlation_id: str) -> None:
        self._mark_modified()
        self._add_domain_event(CategoryUpdated(
            aggregate_id=self.id,
            aggregate_version=self.version,
            correlation_id=correlation_id,
            name=self.name,
            description=self.description,
            parent_id=self.parent_id,
            is_active=self.is_active,
        ))
