"""Supabase client module for database operations."""

import logging
from collections.abc import Callable
from typing import Any, cast

from supabase import Client, create_client

from revops.core.circuit_breaker import CircuitBreakerOpen, supabase_circuit_breaker
from revops.core.config import settings
from revops.core.exceptions import ConfigurationError, DatabaseError, NotFoundError

logger = logging.getLogger(__name__)

DEAL_COLUMNS = (
    "id, hubspot_deal_id, deal_name, amount, close_date, deal_stage, pipeline, owner_id, "
    "last_activity_date, next_activity_date, next_step, next_step_due_date, "
    "next_step_status, next_step_confidence, next_step_display_message, "
    "hubspot_created_at, sql_entered_at, demo_scheduled_entered_at, "
    "demo_completed_entered_at, closed_won_entered_at, deal_substage, lead_source, "
    "products, deal_collaborator"
)
OWNER_COLUMNS = "id, first_name, last_name, email"
TASK_COLUMNS = "id, subject, status, due_date, deal_id, owner_id"


class SupabaseClient:
    """Singleton Supabase client for backend operations."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create the Supabase client singleton.

        Returns:
            Initialized Supabase client.

        Raises:
            ConfigurationError: If Supabase credentials are not set.
            DatabaseError: If client initialization fails.
        """
        if cls._client is None:
            if not settings.is_configured:
                raise ConfigurationError("Supabase credentials are not configured")
            try:
                cls._client = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                logger.exception("Failed to initialize Supabase client")
                raise DatabaseError(f"Failed to initialize database connection: {e}") from e
        return cls._client

    @classmethod
    def reset_client(cls) -> None:
        """Reset the client singleton (useful for testing)."""
        cls._client = None

    @classmethod
    def _rows(cls, action: str, build: Callable[[Client], Any], **log_extra: Any) -> list[dict[str, Any]]:
        """Execute a query built by ``build`` and return its rows.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            supabase_circuit_breaker.check()
            response = build(cls.get_client()).execute()
            supabase_circuit_breaker.record_success()
            return cast(list[dict[str, Any]], response.data or [])
        except (CircuitBreakerOpen, DatabaseError, ConfigurationError):
            raise
        except Exception as e:
            supabase_circuit_breaker.record_failure()
            logger.exception("Error fetching %s", action, extra=log_extra)
            raise DatabaseError(f"Failed to fetch {action}: {e}") from e

    @classmethod
    async def get_owners_by_emails(cls, emails: list[str]) -> list[dict[str, Any]]:
        """Fetch owners whose email is in ``emails``, ordered by last name."""
        if not emails:
            return []
        return cls._rows(
            "owners",
            lambda c: c.table("owners").select(OWNER_COLUMNS).in_("email", emails).order("last_name"),
            email_count=len(emails),
        )

    @classmethod
    async def get_owner(cls, owner_id: str) -> dict[str, Any]:
        """Fetch a single owner.

        Raises:
            NotFoundError: If the owner does not exist.
            DatabaseError: If the query fails.
        """
        rows = cls._rows(
            "owner",
            lambda c: c.table("owners").select(OWNER_COLUMNS).eq("id", owner_id).limit(1),
            owner_id=owner_id,
        )
        if not rows:
            raise NotFoundError("Owner", owner_id)
        return rows[0]

    @classmethod
    async def get_deals(cls, owner_ids: list[str] | None = None) -> list[dict[str, Any]]:
        """Fetch deal rows, optionally restricted to a set of owners."""
        if owner_ids is not None and not owner_ids:
            return []

        def build(c: Client) -> Any:
            query = c.table("deals").select(DEAL_COLUMNS)
            if owner_ids is not None:
                query = query.in_("owner_id", owner_ids)
            return query.order("amount", desc=True)

        return cls._rows("deals", build, owner_count=len(owner_ids or []))

    @classmethod
    async def get_commitments(cls, deal_ids: list[str]) -> list[dict[str, Any]]:
        """Fetch hygiene commitments for the given deals, newest first."""
        if not deal_ids:
            return []
        return cls._rows(
            "hygiene commitments",
            lambda c: c.table("hygiene_commitments")
            .select("deal_id, commitment_date, status, created_at")
            .in_("deal_id", deal_ids)
            .order("created_at", desc=True),
            deal_count=len(deal_ids),
        )

    @classmethod
    async def get_tasks(cls, owner_ids: list[str]) -> list[dict[str, Any]]:
        """Fetch tasks with a due date for the given owners, oldest due first."""
        if not owner_ids:
            return []
        return cls._rows(
            "tasks",
            lambda c: c.table("tasks")
            .select(TASK_COLUMNS)
            .in_("owner_id", owner_ids)
            .not_.is_("due_date", "null")
            .order("due_date"),
            owner_count=len(owner_ids),
        )

    @classmethod
    async def get_quota(cls, owner_id: str, fiscal_year: int, fiscal_quarter: int) -> float | None:
        """Fetch an owner's quota for a quarter, or None if none is set."""
        rows = cls._rows(
            "quota",
            lambda c: c.table("quotas")
            .select("quota_amount")
            .eq("owner_id", owner_id)
            .eq("fiscal_year", fiscal_year)
            .eq("fiscal_quarter", fiscal_quarter)
            .limit(1),
            owner_id=owner_id,
        )
        if not rows or rows[0].get("quota_amount") in (None, 0):
            return None
        return float(rows[0]["quota_amount"])

    @classmethod
    async def insert_digest(cls, row: dict[str, Any]) -> dict[str, Any]:
        """Store a generated pipeline digest.

        Raises:
            DatabaseError: If the insert fails or returns no row.
        """
        try:
            supabase_circuit_breaker.check()
            response = cls.get_client().table("pipeline_digests").insert(row).execute()
            if response.data and len(response.data) > 0:
                supabase_circuit_breaker.record_success()
                return cast(dict[str, Any], response.data[0])
            raise DatabaseError("Failed to store pipeline digest")
        except (CircuitBreakerOpen, DatabaseError, ConfigurationError):
            raise
        except Exception as e:
            supabase_circuit_breaker.record_failure()
            logger.exception("Error storing pipeline digest", extra={"scope": row.get("scope")})
            raise DatabaseError(f"Failed to store pipeline digest: {e}") from e
