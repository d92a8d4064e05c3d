"""
Access Token Inspection

The client never verifies signatures (it does not hold the secret); it only
reads claims to decide whether a token is worth sending or should be
refreshed first.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt
from jwt import PyJWTError


logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Token could not be decoded."""
    pass


def decode_token_unverified(token: str) -> Dict[str, Any]:
    """
    Decode a token without verification.

    WARNING: Never use this for authorization decisions; the backend
    verifies every request.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except PyJWTError as e:
        raise TokenError(f"Failed to decode token: {str(e)}")


def token_expiry(token: str) -> Optional[datetime]:
    """Expiry of ``token`` as an aware UTC datetime, or None if it has no exp."""
    payload = decode_token_unverified(token)
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


def is_token_expired(token: Optional[str], leeway: int = 0) -> bool:
    """
    Check whether a token is missing, malformed or (about to be) expired.

    Tokens without an ``exp`` claim never expire.
    """
    if not token:
        return True
    try:
        expires_at = token_expiry(token)
    except TokenError as e:
        logger.debug(f"Treating malformed token as expired: {e}")
        return True
    if expires_at is None:
        return False
    return expires_at.timestamp() - leeway <= datetime.now(timezone.utc).timestamp()


def extract_user_info(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract user identity from an access-token payload.

    The backend signs {_id | id | userId, role, email}.
    """
    return {
        "id": payload.get("_id") or payload.get("id") or payload.get("userId"),
        "role": payload.get("role"),
        "email": payload.get("email"),
    }
