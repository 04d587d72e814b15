"""FastAPI dependency providers.

Handlers receive the pool, manager and verifiers through these so tests can
swap them with `app.dependency_overrides`.
"""

import asyncpg
from fastapi import Depends

from config import Settings, get_settings
from database import get_pool
from orders import OrderManager
from payments import CardWebhookVerifier, CryptoWebhookVerifier, CardPaymentGateway

async def get_db_pool() -> asyncpg.Pool:
    return await get_pool()

def get_card_gateway(settings: Settings = Depends(get_settings)) -> CardPaymentGateway:
    return CardPaymentGateway(settings.stripe_secret_key, currency=settings.currency)

def get_order_manager(
    pool: asyncpg.Pool = Depends(get_db_pool),
    settings: Settings = Depends(get_settings),
    gateway: CardPaymentGateway = Depends(get_card_gateway)
) -> OrderManager:
    return OrderManager(pool=pool, settings=settings, card_gateway=gateway)

def get_card_verifier(settings: Settings = Depends(get_settings)) -> CardWebhookVerifier:
    return CardWebhookVerifier(
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance
    )

def get_crypto_verifier(settings: Settings = Depends(get_settings)) -> CryptoWebhookVerifier:
    return CryptoWebhookVerifier(settings.alchemy_signing_key)
