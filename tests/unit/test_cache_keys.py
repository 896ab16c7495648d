"""Cache key scheme."""

from __future__ import annotations

import fnmatch
import uuid

from ecommerce.cache import keys

PID = uuid.UUID("11111111-1111-1111-1111-111111111111")
CID = uuid.UUID("22222222-2222-2222-2222-222222222222")


class TestKeyShapes:
    def test_point_keys(self):
        assert keys.product(PID) == f"product:{PID}"
        assert keys.order(PID) == f"order:{PID}"
        assert keys.customer(CID) == f"customer:{CID}"

    def test_products_list_minimal(self):
        assert keys.products_list(1, 20) == "products:list:1:20"

    def test_products_list_optional_segments(self):
        key = keys.products_list(1, 20, search_term="  Laptop ", category_id=CID)
        assert key == f"products:list:1:20:search:laptop:category:{CID}"

    def test_products_list_same_for_any_case(self):
        assert keys.products_list(1, 20, "LAPTOP") == keys.products_list(1, 20, "laptop")

    def test_products_search(self):
        assert keys.products_search("Gaming Mouse", 2, 10) == "products:search:gaming%20mouse:2:10"

    def test_orders_list_scoped_by_customer(self):
        assert keys.orders_list(CID, 1, 20) == f"orders:list:{CID}:1:20"

    def test_customers_list(self):
        assert keys.customers_list(3, 50) == "customers:list:3:50"
        assert keys.customers_list(3, 50, "Ada") == "customers:list:3:50:search:ada"

    def test_point_exists_key(self):
        assert keys.point_exists(keys.product(PID)) == f"product:{PID}:exists"

    def test_categories_list(self):
        assert keys.categories_list() == "categories:list:active"
        assert keys.categories_list(True, CID) == f"categories:list:all:parent:{CID}"
        assert keys.category(CID) == f"category:{CID}"


class TestNormalization:
    def test_point_keys_case_insensitive(self):
        upper = str(PID).upper()
        assert keys.product(upper) == keys.product(PID)
        assert keys.order(upper) == keys.order(PID)
        assert keys.customer(str(CID).upper()) == keys.customer(CID)

    def test_customer_scope_case_insensitive(self):
        assert keys.orders_list(str(CID).upper(), 1, 20) == keys.orders_list(CID, 1, 20)
        assert keys.orders_pattern(str(CID).upper()) == keys.orders_pattern(CID)

    def test_search_term_cannot_forge_category_segment(self):
        forged = keys.products_list(1, 20, search_term=f"laptop:category:{CID}")
        real = keys.products_list(1, 20, search_term="laptop", category_id=CID)
        assert forged != real

    def test_search_term_separator_escaped(self):
        assert keys.customers_list(1, 20, "a:b") != keys.customers_list(1, 20, "ab")
        assert keys.customers_list(1, 20, "a:b").count(":") == keys.customers_list(1, 20, "ab").count(":")

    def test_glob_metacharacters_escaped(self):
        key = keys.products_search("*[a]?", 1, 20)
        assert not any(ch in key for ch in "*?[]")

    def test_escaping_keeps_distinct_terms_distinct(self):
        assert keys.products_search("a%3a", 1, 20) != keys.products_search("a:", 1, 20)


class TestPatterns:
    def test_products_pattern_covers_lists_and_search(self):
        pattern = keys.products_pattern()
        for key in (
            keys.products_list(1, 20),
            keys.products_list(2, 20, "x", CID),
            keys.products_search("laptop", 1, 20),
            keys.query_key("products", "low_stock", limit=10),
        ):
            assert fnmatch.fnmatchcase(key, pattern)
        assert not fnmatch.fnmatchcase(keys.product(PID), pattern)

    def test_orders_pattern_scoped_to_customer(self):
        other = uuid.uuid4()
        pattern = keys.orders_pattern(CID)
        assert fnmatch.fnmatchcase(keys.orders_list(CID, 1, 20), pattern)
        assert not fnmatch.fnmatchcase(keys.orders_list(other, 1, 20), pattern)

    def test_categories_pattern_covers_lists(self):
        pattern = keys.categories_pattern()
        assert fnmatch.fnmatchcase(keys.categories_list(), pattern)
        assert fnmatch.fnmatchcase(keys.categories_list(True, CID), pattern)
        assert not fnmatch.fnmatchcase(keys.category(CID), pattern)

    def test_orders_pattern_without_customer(self):
        assert keys.orders_pattern() == "orders:*"

    def test_point_family_matches_exists_key(self):
        point = keys.product(PID)
        assert fnmatch.fnmatchcase(keys.point_exists(point), keys.point_family(point))
        assert not fnmatch.fnmatchcase(point, keys.point_family(point))


class TestQueryKey:
    def test_no_params(self):
        assert keys.query_key("Products", "Featured") == "products:featured"

    def test_none_params_dropped(self):
        assert keys.query_key("products", "x", a=1, b=None) == keys.query_key("products", "x", a=1)

    def test_order_independent(self):
        assert keys.query_key("products", "x", a=1, b="Q") == keys.query_key("products", "x", b="q", a=1)
