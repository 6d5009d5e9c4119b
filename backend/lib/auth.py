"""
Authentication utilities for JWT validation
"""
import logging
import os
from typing import Optional
from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv
from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

# Same secret Supabase signs access tokens with; when unset, tokens are checked remotely
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    return authorization.replace("Bearer ", "", 1)


def decode_token(token: str, secret: str) -> dict:
    """
    Verify a Supabase access token locally.

    Raises:
        HTTPException: If the signature, expiry or audience is invalid
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning(f"⚠️ [Auth] Token rejected: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return {
        "id": claims["sub"],
        "email": claims.get("email"),
        "user_metadata": claims.get("user_metadata") or {},
    }


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate JWT token and return user info

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: id, email, user_metadata (training phase lives here)

    Raises:
        HTTPException: If token is invalid
    """
    token = _bearer_token(authorization)

    if JWT_SECRET:
        return decode_token(token, JWT_SECRET)

    try:
        supabase = get_supabase_client()
        user_response = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = user_response.user
        return {
            "id": user.id,
            "email": user.email,
            "user_metadata": user.user_metadata or {},
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ [Auth] Could not validate token: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")
