"""
Database access layer for the invoice assistant backend.

All database operations MUST:
- Respect Row Level Security (RLS): user_id = auth.uid()
- Go through the PersistenceGateway interface (no raw SQL)

Includes:
- Supabase client initialization (per request, user JWT)
- PersistenceGateway interface and its Supabase implementation
"""

from .client import get_supabase_client
from .gateway import Entity, PersistenceGateway, SupabaseGateway

__all__ = ["Entity", "PersistenceGateway", "SupabaseGateway", "get_supabase_client"]
