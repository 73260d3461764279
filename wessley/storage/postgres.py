from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from wessley.logging import get_logger
from wessley.storage.errors import ConstraintViolation
from wessley.storage.memory import _pick
from wessley.storage.models import (
    CHAT_MUTABLE_FIELDS,
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

_REQUIRED_TABLES = (
    "profiles",
    "workspaces",
    "vehicles",
    "chat_conversations",
    "chat_messages",
    "user_onboarding",
)


def _row_to(model, row: Optional[dict]):
    if not row:
        return None
    fields = model.__dataclass_fields__
    values = {key: value for key, value in row.items() if key in fields}
    for key in ("id", "user_id", "workspace_id", "conversation_id"):
        if values.get(key) is not None:
            values[key] = str(values[key])
    return model(**values)


class PostgresStore:
    """Postgres-backed store over the Supabase application tables."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the application tables exist before serving requests."""

        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply the Supabase migrations first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def _update(
        self, table: str, key_column: str, key: str, fields: Dict[str, Any]
    ) -> Optional[dict]:
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in fields
        )
        query = sql.SQL(
            "UPDATE {} SET {}, updated_at = now() WHERE {} = %s RETURNING *"
        ).format(sql.Identifier(table), assignments, sql.Identifier(key_column))
        with self._connect() as conn:
            return conn.execute(query, (*fields.values(), key)).fetchone()

    # Profiles -----------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE user_id = %s", (user_id,)
            ).fetchone()
        return _row_to(Profile, row)

    def get_profile_by_customer(self, customer_id: str) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE stripe_customer_id = %s", (customer_id,)
            ).fetchone()
        return _row_to(Profile, row)

    def upsert_profile(self, user_id: str, **fields: Any) -> Profile:
        fields = _pick(fields, PROFILE_MUTABLE_FIELDS)
        columns = ["user_id", *fields]
        insert = sql.SQL(
            "INSERT INTO profiles ({}) VALUES ({}) ON CONFLICT (user_id) DO UPDATE SET {} RETURNING *"
        ).format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            sql.SQL(", ").join(
                [
                    sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                    for c in fields
                ]
                + [sql.SQL("updated_at = now()")]
            ),
        )
        with self._connect() as conn:
            row = conn.execute(insert, (user_id, *fields.values())).fetchone()
        return _row_to(Profile, row)

    def update_profile(self, user_id: str, **fields: Any) -> Optional[Profile]:
        fields = _pick(fields, PROFILE_MUTABLE_FIELDS)
        if not fields:
            return self.get_profile(user_id)
        return _row_to(Profile, self._update("profiles", "user_id", user_id, fields))

    def update_profile_by_customer(self, customer_id: str, **fields: Any) -> Optional[Profile]:
        fields = _pick(fields, PROFILE_MUTABLE_FIELDS)
        return _row_to(
            Profile, self._update("profiles", "stripe_customer_id", customer_id, fields)
        )

    def search_profiles(self, query: str, limit: int = 10) -> List[Profile]:
        pattern = f"%{query}%"
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM profiles
                WHERE display_name ILIKE %s OR username ILIKE %s OR full_name ILIKE %s
                LIMIT %s
                """,
                (pattern, pattern, pattern, limit),
            ).fetchall()
        return [_row_to(Profile, row) for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO workspaces (id, user_id, name, vehicle_signature, visibility, description)
                    VALUES (%s, %s, %s, %s, %s, %s) RETURNING *
                    """,
                    (str(uuid.uuid4()), user_id, name, vehicle_signature, visibility, description),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "workspace already exists", {"field": "vehicle_signature"}
            )
        return _row_to(Workspace, row)

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM workspaces WHERE id = %s", (workspace_id,)
            ).fetchone()
        return _row_to(Workspace, row)

    def list_workspaces(self, user_id: str) -> List[Workspace]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM workspaces WHERE user_id = %s ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [_row_to(Workspace, row) for row in rows]

    def search_public_workspaces(self, query: str, limit: int = 10) -> List[Workspace]:
        pattern = f"%{query}%"
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workspaces
                WHERE visibility = 'public' AND (name ILIKE %s OR description ILIKE %s)
                LIMIT %s
                """,
                (pattern, pattern, limit),
            ).fetchall()
        return [_row_to(Workspace, row) for row in rows]

    # Vehicles -----------------------------------------------------------

    def create_vehicle(
        self, workspace_id: str, make: str, model: str, year: int, **fields: Any
    ) -> Vehicle:
        fields = _pick(fields, VEHICLE_MUTABLE_FIELDS)
        values = {
            "id": str(uuid.uuid4()),
            "workspace_id": workspace_id,
            "make": make,
            "model": model,
            "year": year,
            **fields,
        }
        insert = sql.SQL("INSERT INTO vehicles ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in values),
            sql.SQL(", ").join(sql.Placeholder() for _ in values),
        )
        try:
            with self._connect() as conn:
                row = conn.execute(insert, tuple(values.values())).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("workspace not found", {"field": "workspace_id"})
        return _row_to(Vehicle, row)

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM vehicles WHERE id = %s", (vehicle_id,)
            ).fetchone()
        return _row_to(Vehicle, row)

    def list_vehicles(self, workspace_id: str) -> List[Vehicle]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM vehicles WHERE workspace_id = %s ORDER BY created_at DESC",
                (workspace_id,),
            ).fetchall()
        return [_row_to(Vehicle, row) for row in rows]

    def update_vehicle(self, vehicle_id: str, **fields: Any) -> Optional[Vehicle]:
        fields = _pick(fields, VEHICLE_MUTABLE_FIELDS)
        if not fields:
            return self.get_vehicle(vehicle_id)
        return _row_to(Vehicle, self._update("vehicles", "id", vehicle_id, fields))

    def delete_vehicle(self, vehicle_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM vehicles WHERE id = %s", (vehicle_id,))
            return cur.rowcount > 0

    # Chats and messages -------------------------------------------------

    def create_chat(
        self,
        user_id: str,
        *,
        workspace_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Chat:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO chat_conversations (id, user_id, workspace_id, title)
                VALUES (%s, %s, %s, %s) RETURNING *
                """,
                (str(uuid.uuid4()), user_id, workspace_id, title),
            ).fetchone()
        return _row_to(Chat, row)

    def get_chat(self, chat_id: str, *, user_id: Optional[str] = None) -> Optional[Chat]:
        with self._connect() as conn:
            if user_id:
                row = conn.execute(
                    "SELECT * FROM chat_conversations WHERE id = %s AND user_id = %s",
                    (chat_id, user_id),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM chat_conversations WHERE id = %s", (chat_id,)
                ).fetchone()
        return _row_to(Chat, row)

    def list_chats(
        self, user_id: str, *, workspace_id: Optional[str] = None
    ) -> List[Chat]:
        with self._connect() as conn:
            if workspace_id:
                rows = conn.execute(
                    """
                    SELECT * FROM chat_conversations
                    WHERE user_id = %s AND workspace_id = %s ORDER BY created_at DESC
                    """,
                    (user_id, workspace_id),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM chat_conversations WHERE user_id = %s ORDER BY created_at DESC",
                    (user_id,),
                ).fetchall()
        return [_row_to(Chat, row) for row in rows]

    def update_chat(self, chat_id: str, **fields: Any) -> Optional[Chat]:
        fields = _pick(fields, CHAT_MUTABLE_FIELDS)
        if not fields:
            return self.get_chat(chat_id)
        return _row_to(Chat, self._update("chat_conversations", "id", chat_id, fields))

    def delete_chat(self, chat_id: str) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM chat_messages WHERE conversation_id = %s", (chat_id,))
            cur = conn.execute("DELETE FROM chat_conversations WHERE id = %s", (chat_id,))
            return cur.rowcount > 0

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO chat_messages
                        (id, conversation_id, user_id, role, content, ai_model, ai_tokens_used)
                    VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING *
                    """,
                    (str(uuid.uuid4()), chat_id, user_id, role, content, ai_model, ai_tokens_used),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("chat not found", {"field": "chat_id"})
        return _row_to(ChatMessage, row)

    def list_messages(self, chat_id: str, limit: int = 20) -> List[ChatMessage]:
        """Return the latest ``limit`` messages, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM (
                    SELECT * FROM chat_messages WHERE conversation_id = %s
                    ORDER BY created_at DESC LIMIT %s
                ) recent ORDER BY created_at ASC
                """,
                (chat_id, limit),
            ).fetchall()
        return [_row_to(ChatMessage, row) for row in rows]

    # Onboarding ---------------------------------------------------------

    def get_onboarding(self, user_id: str) -> Optional[UserOnboarding]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_onboarding WHERE user_id = %s", (user_id,)
            ).fetchone()
        return _row_to(UserOnboarding, row)

    def complete_onboarding(self, user_id: str, **fields: Any) -> UserOnboarding:
        fields = _pick(fields, ONBOARDING_MUTABLE_FIELDS)
        values = {
            "user_id": user_id,
            "has_completed": True,
            "completed_at": datetime.utcnow(),
            **fields,
        }
        upsert = sql.SQL(
            "INSERT INTO user_onboarding ({}) VALUES ({}) ON CONFLICT (user_id) DO UPDATE SET {} RETURNING *"
        ).format(
            sql.SQL(", ").join(sql.Identifier(c) for c in values),
            sql.SQL(", ").join(sql.Placeholder() for _ in values),
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                for c in values
                if c != "user_id"
            ),
        )
        with self._connect() as conn:
            row = conn.execute(upsert, tuple(values.values())).fetchone()
        return _row_to(UserOnboarding, row)
