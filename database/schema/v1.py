"""Schema v1 - Initial database schema.

This version includes tables for:
- Users (seller payout wallets, owned by the session provider)
- Items and their sale status
- Orders for card and crypto payments
"""

ITEM_CONDITIONS = ('new', 'like-new', 'good', 'fair', 'poor')
ITEM_STATUSES = ('available', 'reserved', 'sold')
ORDER_STATUSES = ('pending', 'completed', 'cancelled', 'refunded')
PAYMENT_METHODS = ('card', 'crypto')

def _one_of(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'crypto_wallet_address', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'items',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'price', 'type': 'NUMERIC(12, 2)', 'nullable': False, 'check': 'price > 0'},
                {'name': 'condition', 'type': 'TEXT', 'nullable': False,
                 'check': _one_of('condition', ITEM_CONDITIONS)},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'available'",
                 'check': _one_of('status', ITEM_STATUSES)},
                {'name': 'image_urls', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['seller_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_items_seller', 'columns': ['seller_id']},
                {'name': 'idx_items_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'orders',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'item_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'payment_method', 'type': 'TEXT', 'nullable': False,
                 'check': _one_of('payment_method', PAYMENT_METHODS)},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
                 'check': _one_of('status', ORDER_STATUSES)},
                {'name': 'amount_paid', 'type': 'NUMERIC(12, 2)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'usd'"},
                # Crypto payments
                {'name': 'tx_hash', 'type': 'TEXT', 'unique': True},
                {'name': 'chain_id', 'type': 'INT8'},
                {'name': 'buyer_wallet_address', 'type': 'TEXT'},
                {'name': 'seller_wallet_address', 'type': 'TEXT'},
                {'name': 'amount_paid_crypto', 'type': 'NUMERIC(36, 18)'},
                # Card payments
                {'name': 'payment_intent_id', 'type': 'TEXT', 'unique': True},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['item_id'], 'references': 'items(id)'},
                {'columns': ['buyer_id'], 'references': 'users(id)'},
                {'columns': ['seller_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_orders_item', 'columns': ['item_id']},
                {'name': 'idx_orders_buyer', 'columns': ['buyer_id']},
                {'name': 'idx_orders_status_created', 'columns': ['status', 'created_at']},
                # Exactly one order may ever complete for an item
                {'name': 'idx_orders_item_completed', 'columns': ['item_id'], 'unique': True,
                 'where': "status = 'completed'"}
            ]
        }
    ]
}
