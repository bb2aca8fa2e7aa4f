"""Database client and operations."""

from .realtime import RealtimeFeed, Subscription
from .supabase_client import SupabaseClient, get_db_client

__all__ = ["RealtimeFeed", "SupabaseClient", "Subscription", "get_db_client"]
