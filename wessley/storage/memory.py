from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from wessley.logging import get_logger
from wessley.storage.errors import ConstraintViolation
from wessley.storage.models import (
    CHAT_MUTABLE_FIELDS,
    DEMO_USER_ID,
    DEMO_VEHICLE_ID,
    DEMO_WORKSPACE_ID,
    ONBOARDING_MUTABLE_FIELDS,
    PROFILE_MUTABLE_FIELDS,
    VEHICLE_MUTABLE_FIELDS,
    Chat,
    ChatMessage,
    Profile,
    UserOnboarding,
    Vehicle,
    Workspace,
)


def _pick(updates: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"unsupported fields: {', '.join(sorted(unknown))}")
    return dict(updates)


class MemoryStore:
    """In-memory backing store used for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.profiles: Dict[str, Profile] = {}
        self.workspaces: Dict[str, Workspace] = {}
        self.vehicles: Dict[str, Vehicle] = {}
        self.chats: Dict[str, Chat] = {}
        self.messages: Dict[str, List[ChatMessage]] = {}
        self.onboarding: Dict[str, UserOnboarding] = {}
        # RLock so helpers can call each other while holding it
        self._data_lock = threading.RLock()
        self._seed_demo_workspace()

    def _seed_demo_workspace(self) -> None:
        seeded_at = datetime(2025, 1, 15)
        self.workspaces[DEMO_WORKSPACE_ID] = Workspace(
            id=DEMO_WORKSPACE_ID,
            user_id=DEMO_USER_ID,
            name="Scarlet",
            vehicle_signature="scarlet-galloper-demo",
            status="active",
            visibility="public",
            description="Demo workspace for Scarlet, a 2000 Hyundai Galloper restoration project",
            created_at=seeded_at,
            updated_at=seeded_at,
            last_activity_at=seeded_at,
        )
        self.vehicles[DEMO_VEHICLE_ID] = Vehicle(
            id=DEMO_VEHICLE_ID,
            workspace_id=DEMO_WORKSPACE_ID,
            make="Hyundai",
            model="Galloper",
            year=2000,
            vin="KMHJN81WPYU034521",
            engine_type="3.0L V6",
            transmission_type="Manual",
            fuel_type="Gasoline",
            body_style="suv",
            electrical_voltage=12,
            created_at=seeded_at,
            updated_at=seeded_at,
        )

    def verify_connection(self) -> None:
        return None

    # Profiles -----------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._data_lock:
            return self.profiles.get(user_id)

    def get_profile_by_customer(self, customer_id: str) -> Optional[Profile]:
        with self._data_lock:
            return next(
                (p for p in self.profiles.values() if p.stripe_customer_id == customer_id),
                None,
            )

    def upsert_profile(self, user_id: str, **fields: Any) -> Profile:
        """Update the profile for ``user_id``, creating it when missing."""
        fields = _pick(fields, PROFILE_MUTABLE_FIELDS)
        with self._data_lock:
            existing = self.profiles.get(user_id)
            if existing:
                profile = replace(existing, **fields, updated_at=datetime.utcnow())
            else:
                profile = Profile(id=str(uuid.uuid4()), user_id=user_id, **fields)
            self.profiles[user_id] = profile
            return profile

    def update_profile(self, user_id: str, **fields: Any) -> Optional[Profile]:
        fields = _pick(fields, PROFILE_MUTABLE_FIELDS)
        with self._data_lock:
            existing = self.profiles.get(user_id)
            if not existing:
                return None
            profile = replace(existing, **fields, updated_at=datetime.utcnow())
            self.profiles[user_id] = profile
            return profile

    def update_profile_by_customer(self, customer_id: str, **fields: Any) -> Optional[Profile]:
        with self._data_lock:
            existing = self.get_profile_by_customer(customer_id)
            if not existing:
                return None
            return self.update_profile(existing.user_id, **fields)

    def search_profiles(self, query: str, limit: int = 10) -> List[Profile]:
        needle = query.lower()
        with self._data_lock:
            matches = [
                p
                for p in self.profiles.values()
                if any(
                    needle in (value or "").lower()
                    for value in (p.display_name, p.username, p.full_name)
                )
            ]
            return matches[:limit]

    # Workspaces ---------------------------------------------------------

    def create_workspace(
        self,
        user_id: str,
        name: str,
        vehicle_signature: str,
        *,
        visibility: str = "private",
        description: Optional[str] = None,
    ) -> Workspace:
        with self._data_lock:
            if any(
                w.user_id == user_id and w.vehicle_signature == vehicle_signature
                for w in self.workspaces.values()
            ):
                raise ConstraintViolation(
                    "workspace already exists", {"field": "vehicle_signature"}
                )
            workspace = Workspace(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                vehicle_signature=vehicle_signature,
                visibility=visibility,
                description=description,
            )
            self.workspaces[workspace.id] = workspace
            return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with self._data_lock:
            return self.workspaces.get(workspace_id)

    def list_workspaces(self, user_id: str) -> List[Workspace]:
        with self._data_lock:
            results = [w for w in self.workspaces.values() if w.user_id == user_id]
            return sorted(results, key=lambda w: w.created_at, reverse=True)

    def search_public_workspaces(self, query: str, limit: int = 10) -> List[Workspace]:
        needle = query.lower()
        with self._data_lock:
            matches = [
                w
                for w in self.workspaces.values()
                if w.visibility == "public"
                and (needle in w.name.lower() or needle in (w.description or "").lower())
            ]
            return matches[:limit]

    # Vehicles -----------------------------------------------------------

    def create_vehicle(
        self, workspace_id: str, make: str, model: str, year: int, **fields: Any
    ) -> Vehicle:
        fields = _pick(fields, VEHICLE_MUTABLE_FIELDS)
        with self._data_lock:
            if workspace_id not in self.workspaces:
                raise ConstraintViolation("workspace not found", {"field": "workspace_id"})
            vehicle = Vehicle(
                id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                make=make,
                model=model,
                year=year,
                **fields,
            )
            self.vehicles[vehicle.id] = vehicle
            return vehicle

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._data_lock:
            return self.vehicles.get(vehicle_id)

    def list_vehicles(self, workspace_id: str) -> List[Vehicle]:
        with self._data_lock:
            results = [v for v in self.vehicles.values() if v.workspace_id == workspace_id]
            return sorted(results, key=lambda v: v.created_at, reverse=True)

    def update_vehicle(self, vehicle_id: str, **fields: Any) -> Optional[Vehicle]:
        fields = _pick(fields, VEHICLE_MUTABLE_FIELDS)
        with self._data_lock:
            existing = self.vehicles.get(vehicle_id)
            if not existing:
                return None
            vehicle = replace(existing, **fields, updated_at=datetime.utcnow())
            self.vehicles[vehicle_id] = vehicle
            return vehicle

    def delete_vehicle(self, vehicle_id: str) -> bool:
        with self._data_lock:
            return self.vehicles.pop(vehicle_id, None) is not None

    # Chats and messages -------------------------------------------------

    def create_chat(
        self,
        user_id: str,
        *,
        workspace_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Chat:
        with self._data_lock:
            chat = Chat(
                id=str(uuid.uuid4()),
                user_id=user_id,
                workspace_id=workspace_id,
                title=title,
            )
            self.chats[chat.id] = chat
            self.messages[chat.id] = []
            return chat

    def get_chat(self, chat_id: str, *, user_id: Optional[str] = None) -> Optional[Chat]:
        with self._data_lock:
            chat = self.chats.get(chat_id)
            if chat and user_id and chat.user_id != user_id:
                return None
            return chat

    def list_chats(
        self, user_id: str, *, workspace_id: Optional[str] = None
    ) -> List[Chat]:
        with self._data_lock:
            results = [
                c
                for c in self.chats.values()
                if c.user_id == user_id
                and (workspace_id is None or c.workspace_id == workspace_id)
            ]
            return sorted(results, key=lambda c: c.created_at, reverse=True)

    def update_chat(self, chat_id: str, **fields: Any) -> Optional[Chat]:
        fields = _pick(fields, CHAT_MUTABLE_FIELDS)
        with self._data_lock:
            existing = self.chats.get(chat_id)
            if not existing:
                return None
            chat = replace(existing, **fields, updated_at=datetime.utcnow())
            self.chats[chat_id] = chat
            return chat

    def delete_chat(self, chat_id: str) -> bool:
        with self._data_lock:
            self.messages.pop(chat_id, None)
            return self.chats.pop(chat_id, None) is not None

    def create_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        *,
        user_id: Optional[str] = None,
        ai_model: Optional[str] = None,
        ai_tokens_used: Optional[int] = None,
    ) -> ChatMessage:
        with self._data_lock:
            if chat_id not in self.chats:
                raise ConstraintViolation("chat not found", {"field": "chat_id"})
            message = ChatMessage(
                id=str(uuid.uuid4()),
                conversation_id=chat_id,
                role=role,
                content=content,
                user_id=user_id,
                ai_model=ai_model,
                ai_tokens_used=ai_tokens_used,
            )
            self.messages.setdefault(chat_id, []).append(message)
            return message

    def list_messages(self, chat_id: str, limit: int = 20) -> List[ChatMessage]:
        """Return the latest ``limit`` messages, oldest first."""
        with self._data_lock:
            history = self.messages.get(chat_id, [])
            return list(history[-limit:]) if limit else list(history)

    # Onboarding ---------------------------------------------------------

    def get_onboarding(self, user_id: str) -> Optional[UserOnboarding]:
        with self._data_lock:
            return self.onboarding.get(user_id)

    def complete_onboarding(self, user_id: str, **fields: Any) -> UserOnboarding:
        fields = _pick(fields, ONBOARDING_MUTABLE_FIELDS)
        now = datetime.utcnow()
        with self._data_lock:
            existing = self.onboarding.get(user_id) or UserOnboarding(user_id=user_id)
            record = replace(existing, **fields, has_completed=True, completed_at=now)
            self.onboarding[user_id] = record
            return record
