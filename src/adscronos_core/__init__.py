"""Core domain primitives shared across adscronos services."""

from .config import AdscronosSettings, X402Config, WebhookConfig, load_settings
from .database import Database, SCHEMA_SQL
from .models import (
    AccessMethod,
    AdCompletion,
    AdEvent,
    AdEventType,
    AdRequirement,
    AdSession,
    AdUnit,
    DeliveryStatus,
    PremiumResource,
    Publisher,
    ResourceAccess,
    WebhookDelivery,
)
from .repositories import Store, create_in_memory_store, create_postgres_store, create_store
from .catalog import PREMIUM_CATALOG, seed_catalog
from .webhooks import (
    DeliveryResult,
    WebhookDeliveryService,
    serialize_payload,
    sign_payload,
    verify_signature,
)

__all__ = [
    "AdscronosSettings",
    "X402Config",
    "WebhookConfig",
    "load_settings",
    "Database",
    "SCHEMA_SQL",
    # Models
    "AccessMethod",
    "AdCompletion",
    "AdEvent",
    "AdEventType",
    "AdRequirement",
    "AdSession",
    "AdUnit",
    "DeliveryStatus",
    "PremiumResource",
    "Publisher",
    "ResourceAccess",
    "WebhookDelivery",
    # Persistence
    "Store",
    "create_in_memory_store",
    "create_postgres_store",
    "create_store",
    "PREMIUM_CATALOG",
    "seed_catalog",
    # Webhooks
    "DeliveryResult",
    "WebhookDeliveryService",
    "serialize_payload",
    "sign_payload",
    "verify_signature",
]
