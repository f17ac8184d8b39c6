from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import logging
import jwt
from app.core.config import settings

logger = logging.getLogger(__name__)

WORKBOARD_CLAIMS = ("sub", "role", "hospital_id")


def create_access_token(subject: str, data: Dict[str, Any]) -> str:
    """Mint an access token with the workboard claim layout.

    Tokens are normally issued by the identity service; this helper exists so
    operators and tests can produce tokens the workboard will accept.
    """
    now = datetime.utcnow()
    claims = {
        **data,
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "token_type": "access",
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Decoded claims, or None when the token is expired, forged or of another type"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired token")
        return None
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected invalid token: {e}")
        return None

    if payload.get("token_type") != token_type:
        return None
    return payload


def missing_claims(payload: Dict[str, Any]) -> list:
    return [claim for claim in WORKBOARD_CLAIMS if not payload.get(claim)]
