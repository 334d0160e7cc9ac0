"""
Supabase client and persistence errors shared by the store modules.

The client is created lazily so importing the API (tests, scripts) never
needs credentials; routes receive it through the get_supabase dependency.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get('SUPABASE_URL')
SUPABASE_KEY = os.environ.get('SUPABASE_SERVICE_KEY')

_supabase_client = None


class StoreError(Exception):
    """A Supabase call failed; wraps the client exception."""


class NotFoundError(StoreError):
    """Requested row does not exist or is not visible to the caller."""


class ForbiddenError(StoreError):
    """Row exists but the caller may not read or change it."""


class TeamAccessError(ForbiddenError):
    """Caller is neither the owner nor a member of the team."""


def get_supabase():
    """Lazy-initialize the backend Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if not (SUPABASE_URL and SUPABASE_KEY):
            raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        from supabase import create_client
        _supabase_client = create_client(SUPABASE_URL.strip(), SUPABASE_KEY.strip())
        logger.info("Supabase client initialized for %s", SUPABASE_URL)
    return _supabase_client


def execute(query, action: str):
    """Run a built PostgREST/RPC query, turning client failures into StoreError."""
    try:
        return query.execute()
    except Exception as e:
        logger.error("%s failed: %s", action, e)
        raise StoreError(f"{action} failed: {e}") from e


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
