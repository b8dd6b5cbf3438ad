"""Repositories for adscronos records, with in-memory and PostgreSQL backends.

The :class:`Store` bundles one repository per record type and is the only
persistence handle application code receives; nothing here is process-global.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from .config import AdscronosSettings
from .database import Database
from .exceptions import AdscronosConflictError
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
    utcnow,
)

logger = logging.getLogger("adscronos.repositories")


# =============================================================================
# Repository protocols
# =============================================================================

class PublisherRepository(Protocol):
    async def get(self, publisher_id: str) -> Optional[Publisher]: ...
    async def get_by_app_id(self, app_id: str) -> Optional[Publisher]: ...
    async def save(self, publisher: Publisher) -> Publisher: ...


class AdUnitRepository(Protocol):
    async def get(self, ad_unit_id: str) -> Optional[AdUnit]: ...
    async def save(self, ad_unit: AdUnit) -> AdUnit: ...


class AdEventRepository(Protocol):
    async def create(self, event: AdEvent) -> AdEvent: ...
    async def list_recent(self, limit: int = 100) -> List[AdEvent]: ...


class WebhookDeliveryRepository(Protocol):
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery: ...
    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]: ...
    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery: ...
    async def list_recent(self, limit: int = 20) -> List[WebhookDelivery]: ...


class ResourceRepository(Protocol):
    async def get(self, resource_id: str) -> Optional[PremiumResource]: ...
    async def list_published(self) -> List[PremiumResource]: ...
    async def save(self, resource: PremiumResource) -> PremiumResource: ...


class AdSessionRepository(Protocol):
    async def create(self, session: AdSession) -> AdSession: ...
    async def get(self, session_id: str) -> Optional[AdSession]: ...


class AdCompletionRepository(Protocol):
    async def get(self, session_id: str) -> Optional[AdCompletion]: ...
    async def create(self, completion: AdCompletion) -> AdCompletion: ...


class ResourceAccessRepository(Protocol):
    async def create(self, access: ResourceAccess) -> ResourceAccess: ...
    async def list_for_user(self, user_id: str) -> List[ResourceAccess]: ...


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryPublisherRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, Publisher] = {}

    async def get(self, publisher_id: str) -> Optional[Publisher]:
        row = self._rows.get(publisher_id)
        return replace(row) if row else None

    async def get_by_app_id(self, app_id: str) -> Optional[Publisher]:
        for row in self._rows.values():
            if row.app_id == app_id:
                return replace(row)
        return None

    async def save(self, publisher: Publisher) -> Publisher:
        self._rows[publisher.id] = replace(publisher)
        return publisher


class InMemoryAdUnitRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, AdUnit] = {}

    async def get(self, ad_unit_id: str) -> Optional[AdUnit]:
        row = self._rows.get(ad_unit_id)
        return replace(row) if row else None

    async def save(self, ad_unit: AdUnit) -> AdUnit:
        self._rows[ad_unit.id] = replace(ad_unit)
        return ad_unit


class InMemoryAdEventRepository:
    def __init__(self) -> None:
        self._rows: List[AdEvent] = []

    async def create(self, event: AdEvent) -> AdEvent:
        self._rows.append(replace(event))
        return event

    async def list_recent(self, limit: int = 100) -> List[AdEvent]:
        rows = sorted(self._rows, key=lambda e: e.ts, reverse=True)
        return [replace(r) for r in rows[:limit]]


class InMemoryWebhookDeliveryRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, WebhookDelivery] = {}

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        self._rows[delivery.id] = replace(delivery)
        return delivery

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        row = self._rows.get(delivery_id)
        return replace(row) if row else None

    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        delivery.updated_at = utcnow()
        self._rows[delivery.id] = replace(delivery)
        return delivery

    async def list_recent(self, limit: int = 20) -> List[WebhookDelivery]:
        rows = sorted(self._rows.values(), key=lambda d: d.created_at, reverse=True)
        return [replace(r) for r in rows[:limit]]


class InMemoryResourceRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, PremiumResource] = {}

    async def get(self, resource_id: str) -> Optional[PremiumResource]:
        row = self._rows.get(resource_id)
        return replace(row) if row else None

    async def list_published(self) -> List[PremiumResource]:
        rows = [r for r in self._rows.values() if r.published]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [replace(r) for r in rows]

    async def save(self, resource: PremiumResource) -> PremiumResource:
        self._rows[resource.id] = replace(resource)
        return resource


class InMemoryAdSessionRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, AdSession] = {}

    async def create(self, session: AdSession) -> AdSession:
        self._rows[session.id] = replace(session)
        return session

    async def get(self, session_id: str) -> Optional[AdSession]:
        row = self._rows.get(session_id)
        return replace(row) if row else None


class InMemoryAdCompletionRepository:
    def __init__(self) -> None:
        self._rows: Dict[str, AdCompletion] = {}

    async def get(self, session_id: str) -> Optional[AdCompletion]:
        row = self._rows.get(session_id)
        return replace(row) if row else None

    async def create(self, completion: AdCompletion) -> AdCompletion:
        if completion.session_id in self._rows:
            raise AdscronosConflictError(
                "Ad session already completed",
                details={"session_id": completion.session_id},
            )
        self._rows[completion.session_id] = replace(completion)
        return completion


class InMemoryResourceAccessRepository:
    def __init__(self) -> None:
        self._rows: List[ResourceAccess] = []

    async def create(self, access: ResourceAccess) -> ResourceAccess:
        self._rows.append(replace(access))
        return access

    async def list_for_user(self, user_id: str) -> List[ResourceAccess]:
        return [replace(r) for r in self._rows if r.user_id == user_id]


# =============================================================================
# PostgreSQL backend
# =============================================================================

class PostgresPublisherRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, publisher_id: str) -> Optional[Publisher]:
        row = await self._db.fetchrow("SELECT * FROM publishers WHERE id = $1", publisher_id)
        return _row_to_publisher(row) if row else None

    async def get_by_app_id(self, app_id: str) -> Optional[Publisher]:
        row = await self._db.fetchrow("SELECT * FROM publishers WHERE app_id = $1", app_id)
        return _row_to_publisher(row) if row else None

    async def save(self, publisher: Publisher) -> Publisher:
        await self._db.execute(
            """
            INSERT INTO publishers (id, app_id, name, webhook_url, webhook_secret)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                app_id = $2, name = $3, webhook_url = $4, webhook_secret = $5
            """,
            publisher.id,
            publisher.app_id,
            publisher.name,
            publisher.webhook_url,
            publisher.webhook_secret,
        )
        return publisher


class PostgresAdUnitRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, ad_unit_id: str) -> Optional[AdUnit]:
        row = await self._db.fetchrow("SELECT * FROM ad_units WHERE id = $1", ad_unit_id)
        if not row:
            return None
        return AdUnit(id=row["id"], publisher_id=row["publisher_id"], name=row["name"])

    async def save(self, ad_unit: AdUnit) -> AdUnit:
        await self._db.execute(
            """
            INSERT INTO ad_units (id, publisher_id, name) VALUES ($1, $2, $3)
            ON CONFLICT (id) DO UPDATE SET publisher_id = $2, name = $3
            """,
            ad_unit.id,
            ad_unit.publisher_id,
            ad_unit.name,
        )
        return ad_unit


class PostgresAdEventRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, event: AdEvent) -> AdEvent:
        await self._db.execute(
            """
            INSERT INTO ad_events (id, event_type, publisher_id, ad_unit_id, signature, ts)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            event.id,
            event.event_type.value,
            event.publisher_id,
            event.ad_unit_id,
            event.signature,
            event.ts,
        )
        return event

    async def list_recent(self, limit: int = 100) -> List[AdEvent]:
        rows = await self._db.fetch("SELECT * FROM ad_events ORDER BY ts DESC LIMIT $1", limit)
        return [
            AdEvent(
                id=row["id"],
                event_type=AdEventType(row["event_type"]),
                publisher_id=row["publisher_id"],
                ad_unit_id=row["ad_unit_id"],
                signature=row["signature"],
                ts=row["ts"],
            )
            for row in rows
        ]


class PostgresWebhookDeliveryRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        await self._db.execute(
            """
            INSERT INTO webhook_deliveries (
                id, publisher_id, event_id, target_url, payload, signature,
                status, attempt, next_attempt_at, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10, $11)
            """,
            delivery.id,
            delivery.publisher_id,
            delivery.event_id,
            delivery.target_url,
            json.dumps(delivery.payload),
            delivery.signature,
            delivery.status.value,
            delivery.attempt,
            delivery.next_attempt_at,
            delivery.created_at,
            delivery.updated_at,
        )
        return delivery

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        row = await self._db.fetchrow("SELECT * FROM webhook_deliveries WHERE id = $1", delivery_id)
        return _row_to_delivery(row) if row else None

    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        delivery.updated_at = utcnow()
        await self._db.execute(
            """
            UPDATE webhook_deliveries SET
                signature = $2, status = $3, attempt = $4, next_attempt_at = $5,
                response_status = $6, error = $7, updated_at = $8
            WHERE id = $1
            """,
            delivery.id,
            delivery.signature,
            delivery.status.value,
            delivery.attempt,
            delivery.next_attempt_at,
            delivery.response_status,
            delivery.error,
            delivery.updated_at,
        )
        return delivery

    async def list_recent(self, limit: int = 20) -> List[WebhookDelivery]:
        rows = await self._db.fetch(
            "SELECT * FROM webhook_deliveries ORDER BY created_at DESC LIMIT $1", limit
        )
        return [_row_to_delivery(row) for row in rows]


class PostgresResourceRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, resource_id: str) -> Optional[PremiumResource]:
        row = await self._db.fetchrow("SELECT * FROM premium_resources WHERE id = $1", resource_id)
        return _row_to_resource(row) if row else None

    async def list_published(self) -> List[PremiumResource]:
        rows = await self._db.fetch(
            "SELECT * FROM premium_resources WHERE published = TRUE ORDER BY created_at DESC"
        )
        return [_row_to_resource(row) for row in rows]

    async def save(self, resource: PremiumResource) -> PremiumResource:
        requirement = None
        if resource.ad_requirement is not None:
            requirement = json.dumps({
                "minViewDuration": resource.ad_requirement.min_view_duration,
                "adType": resource.ad_requirement.ad_type,
                "cost": str(resource.ad_requirement.cost),
            })
        await self._db.execute(
            """
            INSERT INTO premium_resources (
                id, title, description, category, tags, is_public, ad_requirement,
                price, content, preview_content, format, estimated_read_time, published
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (id) DO UPDATE SET
                title = $2, description = $3, category = $4, tags = $5, is_public = $6,
                ad_requirement = $7::jsonb, price = $8, content = $9, preview_content = $10,
                format = $11, estimated_read_time = $12, published = $13
            """,
            resource.id,
            resource.title,
            resource.description,
            resource.category,
            list(resource.tags),
            resource.is_public,
            requirement,
            resource.price,
            resource.content,
            resource.preview_content,
            resource.format,
            resource.estimated_read_time,
            resource.published,
        )
        return resource


class PostgresAdSessionRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, session: AdSession) -> AdSession:
        await self._db.execute(
            """
            INSERT INTO ad_sessions (
                id, resource_id, ad_id, user_id, required_view_duration, expires_at, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            session.id,
            session.resource_id,
            session.ad_id,
            session.user_id,
            session.required_view_duration,
            session.expires_at,
            session.created_at,
        )
        return session

    async def get(self, session_id: str) -> Optional[AdSession]:
        row = await self._db.fetchrow("SELECT * FROM ad_sessions WHERE id = $1", session_id)
        if not row:
            return None
        return AdSession(
            id=row["id"],
            resource_id=row["resource_id"],
            ad_id=row["ad_id"],
            user_id=row["user_id"],
            required_view_duration=row["required_view_duration"],
            expires_at=row["expires_at"],
            created_at=row["created_at"],
        )


class PostgresAdCompletionRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, session_id: str) -> Optional[AdCompletion]:
        row = await self._db.fetchrow("SELECT * FROM ad_completions WHERE session_id = $1", session_id)
        if not row:
            return None
        interaction = row["interaction_data"]
        return AdCompletion(
            session_id=row["session_id"],
            completed=row["completed"],
            view_duration=row["view_duration"],
            payment_processed=row["payment_processed"],
            billing_amount=Decimal(row["billing_amount"]),
            transaction_id=row["transaction_id"],
            interaction_data=json.loads(interaction) if isinstance(interaction, str) else (interaction or {}),
            completed_at=row["completed_at"],
        )

    async def create(self, completion: AdCompletion) -> AdCompletion:
        result = await self._db.execute(
            """
            INSERT INTO ad_completions (
                session_id, completed, view_duration, payment_processed,
                billing_amount, transaction_id, interaction_data, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
            ON CONFLICT (session_id) DO NOTHING
            """,
            completion.session_id,
            completion.completed,
            completion.view_duration,
            completion.payment_processed,
            completion.billing_amount,
            completion.transaction_id,
            json.dumps(completion.interaction_data),
            completion.completed_at,
        )
        if result.endswith(" 0"):
            raise AdscronosConflictError(
                "Ad session already completed",
                details={"session_id": completion.session_id},
            )
        return completion


class PostgresResourceAccessRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, access: ResourceAccess) -> ResourceAccess:
        await self._db.execute(
            """
            INSERT INTO resource_access (
                id, resource_id, user_id, access_method, session_id, expires_at, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            access.id,
            access.resource_id,
            access.user_id,
            access.access_method.value,
            access.session_id,
            access.expires_at,
            access.created_at,
        )
        return access

    async def list_for_user(self, user_id: str) -> List[ResourceAccess]:
        rows = await self._db.fetch(
            "SELECT * FROM resource_access WHERE user_id = $1 ORDER BY created_at DESC", user_id
        )
        return [
            ResourceAccess(
                id=row["id"],
                resource_id=row["resource_id"],
                user_id=row["user_id"],
                access_method=AccessMethod(row["access_method"]),
                session_id=row["session_id"],
                expires_at=row["expires_at"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


def _row_to_publisher(row) -> Publisher:
    return Publisher(
        id=row["id"],
        app_id=row["app_id"],
        name=row["name"],
        webhook_url=row["webhook_url"],
        webhook_secret=row["webhook_secret"],
    )


def _row_to_delivery(row) -> WebhookDelivery:
    payload = row["payload"]
    return WebhookDelivery(
        id=row["id"],
        publisher_id=row["publisher_id"],
        event_id=row["event_id"],
        target_url=row["target_url"],
        payload=json.loads(payload) if isinstance(payload, str) else payload,
        signature=row["signature"],
        status=DeliveryStatus(row["status"]),
        attempt=row["attempt"] or 0,
        next_attempt_at=row["next_attempt_at"],
        response_status=row["response_status"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_resource(row) -> PremiumResource:
    raw = row["ad_requirement"]
    requirement = None
    if raw:
        data = json.loads(raw) if isinstance(raw, str) else raw
        requirement = AdRequirement(
            min_view_duration=int(data["minViewDuration"]),
            ad_type=data.get("adType", "video"),
            cost=Decimal(str(data.get("cost", "0"))),
        )
    return PremiumResource(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        tags=list(row["tags"] or []),
        is_public=row["is_public"],
        ad_requirement=requirement,
        price=row["price"],
        content=row["content"],
        preview_content=row["preview_content"],
        format=row["format"],
        estimated_read_time=row["estimated_read_time"],
        published=row["published"],
        created_at=row["created_at"],
    )


# =============================================================================
# Store
# =============================================================================

@dataclass
class Store:
    """Explicit persistence handle passed to services and route dependencies."""
    publishers: PublisherRepository
    ad_units: AdUnitRepository
    ad_events: AdEventRepository
    webhook_deliveries: WebhookDeliveryRepository
    resources: ResourceRepository
    ad_sessions: AdSessionRepository
    ad_completions: AdCompletionRepository
    resource_access: ResourceAccessRepository
    database: Optional[Database] = None

    async def connect(self) -> None:
        if self.database is not None:
            await self.database.init_schema()

    async def close(self) -> None:
        if self.database is not None:
            await self.database.close()


def create_in_memory_store() -> Store:
    return Store(
        publishers=InMemoryPublisherRepository(),
        ad_units=InMemoryAdUnitRepository(),
        ad_events=InMemoryAdEventRepository(),
        webhook_deliveries=InMemoryWebhookDeliveryRepository(),
        resources=InMemoryResourceRepository(),
        ad_sessions=InMemoryAdSessionRepository(),
        ad_completions=InMemoryAdCompletionRepository(),
        resource_access=InMemoryResourceAccessRepository(),
    )


def create_postgres_store(db: Database) -> Store:
    return Store(
        publishers=PostgresPublisherRepository(db),
        ad_units=PostgresAdUnitRepository(db),
        ad_events=PostgresAdEventRepository(db),
        webhook_deliveries=PostgresWebhookDeliveryRepository(db),
        resources=PostgresResourceRepository(db),
        ad_sessions=PostgresAdSessionRepository(db),
        ad_completions=PostgresAdCompletionRepository(db),
        resource_access=PostgresResourceAccessRepository(db),
        database=db,
    )


def create_store(settings: AdscronosSettings) -> Store:
    """Pick the backend from ``settings.database_url``."""
    if settings.uses_postgres:
        logger.info("Using PostgreSQL store")
        return create_postgres_store(Database(settings.database_url))
    logger.info("Using in-memory store")
    return create_in_memory_store()
