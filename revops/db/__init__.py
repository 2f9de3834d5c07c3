"""Database clients for RevOps."""

from revops.db.supabase import SupabaseClient

__all__ = ["SupabaseClient"]
