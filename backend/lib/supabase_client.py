"""
Supabase client for the simulator backend

The service role key is used server-side: profiles, progress, streaks,
leaderboard and notifications are all written on behalf of the caller.
"""
import logging
import os
from typing import Optional
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def is_supabase_configured() -> bool:
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        if not is_supabase_configured():
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_SERVICE_KEY"))
        logger.info("✅ [Supabase] Client created")

    return _supabase_client
