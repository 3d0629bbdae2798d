"""Database package initialization."""

from .crud import (
    DETAIL_MODELS,
    caliber_totals,
    consume_rounds,
    create_item_with_detail,
    delete_item_with_detail,
    get_item_with_detail,
    get_transaction_logs,
    list_details,
    list_items,
    log_transaction,
    log_use,
    total_available_for_caliber,
    update_item_with_detail,
)
from .engine import AsyncSessionLocal, close_db, get_session, init_db
from .models import (
    AmmoDetail,
    AmmoThreshold,
    Base,
    Day,
    Event,
    FilamentDetail,
    FirearmDetail,
    InstrumentDetail,
    InventoryItem,
    NotificationPerson,
    TransactionLog,
    Trip,
    User,
)

__all__ = [
    # Models
    "Base",
    "User",
    "InventoryItem",
    "AmmoDetail",
    "FirearmDetail",
    "FilamentDetail",
    "InstrumentDetail",
    "NotificationPerson",
    "AmmoThreshold",
    "Trip",
    "Day",
    "Event",
    "TransactionLog",
    # Engine
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "get_session",
    # CRUD - Catalog
    "DETAIL_MODELS",
    "create_item_with_detail",
    "get_item_with_detail",
    "list_items",
    "list_details",
    "update_item_with_detail",
    "delete_item_with_detail",
    # CRUD - Ammo ledger
    "consume_rounds",
    "log_use",
    "total_available_for_caliber",
    "caliber_totals",
    # CRUD - Transactions
    "log_transaction",
    "get_transaction_logs",
]
