"""Supabase repository for webhook registrations."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from wpp_gateway.services.webhooks import WebhookRepository


@dataclass
class SupabaseWebhookRepository(WebhookRepository):
    """Supabase implementation for webhook registrations."""

    client: Client
    table_name: str = "session_webhooks"

    def get_url(self, session_id: str) -> str | None:
        """Return the stored webhook URL for a session."""
        response = (
            self.client.table(self.table_name)
            .select("url")
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("url")

    def set_url(self, session_id: str, url: str) -> None:
        """Insert or replace the webhook URL for a session."""
        self.client.table(self.table_name).upsert(
            {
                "session_id": session_id,
                "url": url,
                "updated_at": datetime.now(tz=UTC).isoformat(),
            },
            on_conflict="session_id",
        ).execute()

    def delete_url(self, session_id: str) -> bool:
        """Delete the webhook registration for a session."""
        response = (
            self.client.table(self.table_name)
            .delete()
            .eq("session_id", session_id)
            .execute()
        )
        return bool(response.data)
