"""Domain records persisted by the adscronos store."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:16]}"


class AdEventType(str, Enum):
    """Playback/interaction events reported by the ad SDK."""

    IMPRESSION = "IMPRESSION"
    START = "START"
    FIRST_QUARTILE = "FIRST_QUARTILE"
    MIDPOINT = "MIDPOINT"
    THIRD_QUARTILE = "THIRD_QUARTILE"
    COMPLETE = "COMPLETE"
    SKIP = "SKIP"
    CLICK = "CLICK"

    @classmethod
    def from_wire(cls, name: str) -> "AdEventType":
        """Map the SDK's camelCase event name (e.g. ``firstQuartile``)."""
        return _WIRE_EVENT_NAMES[name]

    @property
    def wire_name(self) -> str:
        return _EVENT_WIRE_NAMES[self]


_WIRE_EVENT_NAMES = {
    "impression": AdEventType.IMPRESSION,
    "start": AdEventType.START,
    "firstQuartile": AdEventType.FIRST_QUARTILE,
    "midpoint": AdEventType.MIDPOINT,
    "thirdQuartile": AdEventType.THIRD_QUARTILE,
    "complete": AdEventType.COMPLETE,
    "skip": AdEventType.SKIP,
    "click": AdEventType.CLICK,
}
_EVENT_WIRE_NAMES = {v: k for k, v in _WIRE_EVENT_NAMES.items()}


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AccessMethod(str, Enum):
    AD_COMPLETION = "AD_COMPLETION"
    DIRECT_PAYMENT = "DIRECT_PAYMENT"


@dataclass
class Publisher:
    """A publisher app that embeds ad units and may receive webhooks."""
    id: str = field(default_factory=lambda: new_id("pub"))
    app_id: str = field(default_factory=lambda: new_id("app"))
    name: str = ""
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None

    @property
    def has_webhook(self) -> bool:
        return bool(self.webhook_url and self.webhook_secret)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appId": self.app_id,
            "name": self.name,
            "webhookUrl": self.webhook_url,
            "hasWebhookSecret": self.webhook_secret is not None,
        }


@dataclass
class AdUnit:
    id: str = field(default_factory=lambda: new_id("unit"))
    publisher_id: str = ""
    name: str = ""


@dataclass
class AdEvent:
    id: str = field(default_factory=lambda: new_id("evt"))
    event_type: AdEventType = AdEventType.IMPRESSION
    publisher_id: str = ""
    ad_unit_id: str = ""
    signature: Optional[str] = None
    ts: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventType": self.event_type.value,
            "publisherId": self.publisher_id,
            "adUnitId": self.ad_unit_id,
            "signature": self.signature,
            "ts": self.ts.isoformat(),
        }


@dataclass
class WebhookDelivery:
    """Outbound webhook record; kept forever as the delivery audit trail.

    ``attempt`` grows by one per delivery attempt and ``status`` reflects
    only the most recent attempt.
    """
    id: str = field(default_factory=lambda: new_id("whd"))
    publisher_id: str = ""
    event_id: str = ""
    target_url: str = ""
    payload: dict = field(default_factory=dict)
    signature: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt: int = 0
    next_attempt_at: Optional[datetime] = None
    response_status: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "publisherId": self.publisher_id,
            "eventId": self.event_id,
            "targetUrl": self.target_url,
            "payload": self.payload,
            "status": self.status.value,
            "attempt": self.attempt,
            "nextAttemptAt": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "responseStatus": self.response_status,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class AdRequirement:
    """What a viewer must do to unlock a resource by watching an ad."""
    min_view_duration: int
    ad_type: str = "video"
    cost: Decimal = Decimal("0")  # USD billed to the advertiser per completed view


@dataclass
class PremiumResource:
    id: str
    title: str
    description: str = ""
    category: str = ""
    tags: List[str] = field(default_factory=list)
    is_public: bool = False
    ad_requirement: Optional[AdRequirement] = None
    price: Optional[str] = None  # x402 amount in the token's smallest unit
    content: str = ""
    preview_content: str = ""
    format: str = "markdown"
    estimated_read_time: int = 0
    published: bool = True
    created_at: datetime = field(default_factory=utcnow)

    @property
    def requires_payment(self) -> bool:
        if not self.is_public:
            return True
        return self.ad_requirement is not None and self.ad_requirement.cost > 0

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "requiresPayment": self.requires_payment,
            "estimatedReadTime": self.estimated_read_time,
        }


@dataclass
class AdSession:
    """Gates a resource behind an ad view or a direct payment."""
    resource_id: str
    ad_id: str
    user_id: str
    required_view_duration: int
    id: str = field(default_factory=lambda: new_id("sess"))
    expires_at: datetime = field(default_factory=lambda: utcnow() + timedelta(minutes=30))
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at


@dataclass
class AdCompletion:
    """Terminal record for a session; at most one per session."""
    session_id: str
    completed: bool = True
    view_duration: int = 0
    payment_processed: bool = False
    billing_amount: Decimal = Decimal("0")
    transaction_id: str = ""
    interaction_data: dict = field(default_factory=dict)
    completed_at: datetime = field(default_factory=utcnow)


@dataclass
class ResourceAccess:
    resource_id: str
    user_id: str
    access_method: AccessMethod
    session_id: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("acc"))
    expires_at: datetime = field(default_factory=lambda: utcnow() + timedelta(hours=24))
    created_at: datetime = field(default_factory=utcnow)


def serialize(data: Any) -> Any:
    """Make Decimal/datetime/Enum values JSON friendly."""
    if isinstance(data, dict):
        return {k: serialize(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [serialize(v) for v in data]
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, Enum):
        return data.value
    return data
