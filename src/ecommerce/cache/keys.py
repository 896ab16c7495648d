"""Logical cache key scheme.

Keys are ``{entity}:{operation}:{params...}``, lower-cased, with optional
segments present only when the matching filter is set.  Any component that
writes or evicts cache entries must build keys here; a key built any other
way is invisible to pattern invalidation.

Free-text segments are percent-encoded so a search term can never contain
the separator or a glob metacharacter.

The physical namespace prefix (``ecommerce:``) is added by the cache
service and never appears in these keys.
"""

from __future__ import annotations

import uuid
from typing import Any
from urllib.parse import quote

from ecommerce.core.ids import payload_hash

SEPARATOR = ":"


def _join(*parts: Any) -> str:
    return SEPARATOR.join(str(p) for p in parts)


def _id(value: uuid.UUID | str) -> str:
    return str(value).strip().lower()


def _norm(term: str) -> str:
    return term.strip().lower()


def _term(term: str) -> str:
    # quote() emits upper-case hex; lowering it keeps the encoding injective
    return quote(_norm(term), safe="").lower()


# -- products ----------------------------------------------------------------

def product(product_id: uuid.UUID | str) -> str:
    return _join("product", _id(product_id))


def products_list(
    page: int,
    page_size: int,
    search_term: str | None = None,
    category_id: uuid.UUID | str | None = None,
) -> str:
    key = _join("products", "list", page, page_size)
    if search_term:
        key += SEPARATOR + _join("search", _term(search_term))
    if category_id is not None:
        key += SEPARATOR + _join("category", _id(category_id))
    return key


def products_search(search_term: str, page: int, page_size: int) -> str:
    return _join("products", "search", _term(search_term), page, page_size)


# -- categories --------------------------------------------------------------

def category(category_id: uuid.UUID | str) -> str:
    return _join("category", _id(category_id))


def categories_list(
    include_inactive: bool = False,
    parent_id: uuid.UUID | str | None = None,
) -> str:
    key = _join("categories", "list", "all" if include_inactive else "active")
    if parent_id is not None:
        key += SEPARATOR + _join("parent", _id(parent_id))
    return key


# -- orders ------------------------------------------------------------------

def order(order_id: uuid.UUID | str) -> str:
    return _join("order", _id(order_id))


def orders_list(customer_id: uuid.UUID | str, page: int, page_size: int) -> str:
    return _join("orders", "list", _id(customer_id), page, page_size)


# -- customers ---------------------------------------------------------------

def customer(customer_id: uuid.UUID | str) -> str:
    return _join("customer", _id(customer_id))


def customers_list(page: int, page_size: int, search_term: str | None = None) -> str:
    key = _join("customers", "list", page, page_size)
    if search_term:
        key += SEPARATOR + _join("search", _term(search_term))
    return key


# -- point-lookup families (cached repository) ------------------------------

def point_family(entity_key: str) -> str:
    """Pattern covering derived keys of one entity (``product:{id}:*``)."""
    return entity_key + SEPARATOR + "*"


def point_exists(entity_key: str) -> str:
    return entity_key + SEPARATOR + "exists"


# -- patterns ----------------------------------------------------------------

def products_pattern() -> str:
    return _join("products", "*")


def categories_pattern() -> str:
    return _join("categories", "*")


def orders_pattern(customer_id: uuid.UUID | str | None = None) -> str:
    if customer_id is None:
        return _join("orders", "*")
    return _join("orders", "*", _id(customer_id), "*")


def customers_pattern() -> str:
    return _join("customers", "*")


ALL_PATTERN = "*"


# -- generic -----------------------------------------------------------------

def query_key(entity: str, operation: str, **params: Any) -> str:
    """Key for an arbitrary query: ``{entity}:{operation}:{fingerprint}``.

    ``None`` parameters are dropped and string values are case-normalized
    before hashing, so the same filters in any keyword order produce the
    same key.
    """
    cleaned = {
        k: (_norm(v) if isinstance(v, str) else v)
        for k, v in params.items()
        if v is not None
    }
    if not cleaned:
        return _join(entity.lower(), operation.lower())
    return _join(entity.lower(), operation.lower(), payload_hash(cleaned))
