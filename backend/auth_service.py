"""Access-token verification for Supabase Auth sessions"""
import os
import logging
from datetime import datetime, timezone
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv
import jwt
from pydantic import BaseModel

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

JWT_SECRET = (os.environ.get('SUPABASE_JWT_SECRET') or '').strip()
if not JWT_SECRET:
    raise RuntimeError("SUPABASE_JWT_SECRET environment variable is required")

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


class TokenData(BaseModel):
    user_id: str
    email: str
    exp: datetime


def verify_token(token: str) -> Optional[TokenData]:
    """Verify a Supabase access token and return the caller's identity.

    Supabase signs session tokens with the project JWT secret; the user id is
    the `sub` claim.
    """
    try:
        payload = jwt.decode(
            token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE
        )
        if not payload.get("sub") or not payload.get("email"):
            logger.warning("Token missing sub/email claims")
            return None
        return TokenData(
            user_id=payload["sub"],
            email=payload["email"],
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        return None
    except (jwt.InvalidTokenError, KeyError) as e:
        logger.warning(f"Invalid token: {str(e)}")
        return None
