"""Supabase-backed credential store."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from session_gateway.services.credentials import CredentialStore, LoadedCredentials

_TABLE = "session_credentials"
CREDS_KEY = "creds"


@dataclass
class SupabaseCredentialStore(CredentialStore):
    """Stores credential material as one row per (session, key)."""

    client: Client
    page_size: int = 1000

    async def load(self, session_id: str) -> LoadedCredentials:
        """Load every stored key for a session."""
        state = await asyncio.to_thread(self._select_state, session_id)

        async def save(update: dict[str, object]) -> None:
            await asyncio.to_thread(self._upsert, session_id, update)

        return LoadedCredentials(state=state, save=save)

    async def purge(self, session_id: str) -> None:
        """Delete every stored key for a session."""
        await asyncio.to_thread(self._delete, session_id)

    async def list_session_ids(self) -> list[str]:
        """Return sessions that have a stored ``creds`` key."""
        return await asyncio.to_thread(self._select_session_ids)

    def _select_state(self, session_id: str) -> dict[str, object]:
        response = (
            self.client.table(_TABLE)
            .select("key, value")
            .eq("session_id", session_id)
            .execute()
        )
        return {row["key"]: row["value"] for row in response.data or []}

    def _upsert(self, session_id: str, update: dict[str, object]) -> None:
        if not update:
            return
        updated_at = datetime.now(tz=UTC).isoformat()
        rows = [
            {
                "session_id": session_id,
                "key": key,
                "value": value,
                "updated_at": updated_at,
            }
            for key, value in update.items()
        ]
        self.client.table(_TABLE).upsert(
            rows, on_conflict="session_id,key"
        ).execute()

    def _delete(self, session_id: str) -> None:
        self.client.table(_TABLE).delete().eq("session_id", session_id).execute()

    def _select_session_ids(self) -> list[str]:
        session_ids: list[str] = []
        start = 0
        while True:
            response = (
                self.client.table(_TABLE)
                .select("session_id")
                .eq("key", CREDS_KEY)
                .order("session_id")
                .range(start, start + self.page_size - 1)
                .execute()
            )
            rows = response.data or []
            session_ids.extend(str(row["session_id"]) for row in rows)
            if len(rows) < self.page_size:
                return session_ids
            start += self.page_size
