"""Enumerations used across the e-commerce backend."""

from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class BusBackend(str, Enum):
    MEMORY = "memory"
    RABBITMQ = "rabbitmq"


class CacheBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class SearchBackend(str, Enum):
    MEMORY = "memory"
    ELASTICSEARCH = "elasticsearch"


class CacheCategory(str, Enum):
    """Selects which configured TTL applies to a cached value."""

    PRODUCT = "product"
    ORDER = "order"
    CUSTOMER = "customer"
    SEARCH = "search"
    DEFAULT = "default"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class StockChangeReason(str, Enum):
    RESTOCK = "restock"
    ORDER_PLACED = "order_placed"
    ORDER_CANCELLED = "order_cancelled"
    ADJUSTMENT = "adjustment"


class AddressType(str, Enum):
    SHIPPING = "shipping"
    BILLING = "billing"
    BOTH = "both"
