"""Analytics warehouse module."""

from db.warehouse.client import (
    ClickHouseWarehouseClient,
    HogQLWarehouseClient,
    QueryResult,
    WarehouseClient,
)
from db.warehouse.service import WarehouseService, build_warehouse_client

__all__ = [
    "QueryResult",
    "WarehouseClient",
    "HogQLWarehouseClient",
    "ClickHouseWarehouseClient",
    "WarehouseService",
    "build_warehouse_client",
]
