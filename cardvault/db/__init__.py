from cardvault.db.database import get_session, init_db
from cardvault.db.operations import (
    add_cards,
    add_sold_items,
    card_to_record,
    count_cards,
    create_collection,
    get_cards_by_collection,
    get_collection,
    get_collections,
    get_profile,
    get_sold_items,
    get_sold_serials,
    replace_profile,
    sold_item_to_record,
    strip_internal_fields,
    update_collection_card_count,
)

__all__ = [
    "add_cards",
    "add_sold_items",
    "card_to_record",
    "count_cards",
    "create_collection",
    "get_cards_by_collection",
    "get_collection",
    "get_collections",
    "get_profile",
    "get_session",
    "get_sold_items",
    "get_sold_serials",
    "init_db",
    "replace_profile",
    "sold_item_to_record",
    "strip_internal_fields",
    "update_collection_card_count",
]
