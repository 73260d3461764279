from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

DEMO_WORKSPACE_ID = "cde0ea8e-07aa-4c59-a72b-ba0d56020484"
DEMO_USER_ID = "00000000-0000-0000-0000-000000000000"
DEMO_VEHICLE_ID = "00000000-0000-0000-0000-000000000001"

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trial"})


def is_demo_workspace(workspace_id: Optional[str]) -> bool:
    return workspace_id == DEMO_WORKSPACE_ID


def to_json(record: Any) -> Dict[str, Any]:
    """Serialize a storage dataclass for a JSON response."""
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


@dataclass
class Profile:
    id: str
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    subscription_tier: str = "free"
    subscription_status: str = "inactive"
    subscription_started_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def has_active_subscription(self) -> bool:
        return (
            self.subscription_status in ACTIVE_SUBSCRIPTION_STATUSES
            and self.subscription_tier != "free"
        )

    @property
    def is_admin(self) -> bool:
        return self.subscription_tier == "admin"


@dataclass
class Workspace:
    id: str
    user_id: str
    name: str
    vehicle_signature: str
    status: str = "active"
    visibility: str = "private"
    description: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    last_activity_at: Optional[datetime] = None


@dataclass
class Vehicle:
    id: str
    workspace_id: str
    make: str
    model: str
    year: int
    vin: Optional[str] = None
    engine_type: Optional[str] = None
    transmission_type: Optional[str] = None
    fuel_type: Optional[str] = None
    trim_level: Optional[str] = None
    body_style: Optional[str] = None
    electrical_voltage: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Chat:
    id: str
    user_id: str
    workspace_id: Optional[str] = None
    title: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ChatMessage:
    id: str
    conversation_id: str
    role: str
    content: str
    user_id: Optional[str] = None
    ai_model: Optional[str] = None
    ai_tokens_used: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class UserOnboarding:
    user_id: str
    has_completed: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    vehicle_expertise: Optional[str] = None
    electrical_experience: Optional[str] = None
    primary_goals: List[str] = field(default_factory=list)


# Fields a billing update is allowed to touch on a profile
PROFILE_MUTABLE_FIELDS = frozenset(
    {
        "email",
        "display_name",
        "full_name",
        "username",
        "avatar_url",
        "subscription_tier",
        "subscription_status",
        "subscription_started_at",
        "subscription_expires_at",
        "stripe_customer_id",
        "stripe_subscription_id",
    }
)

VEHICLE_MUTABLE_FIELDS = frozenset(
    {
        "make",
        "model",
        "year",
        "vin",
        "engine_type",
        "transmission_type",
        "fuel_type",
        "trim_level",
        "body_style",
        "electrical_voltage",
    }
)

CHAT_MUTABLE_FIELDS = frozenset({"title", "workspace_id", "last_message_at"})

ONBOARDING_MUTABLE_FIELDS = frozenset(
    {"vehicle_expertise", "electrical_experience", "primary_goals"}
)
