"""Bearer token handling; tokens are HS256 JWTs shared with the identity service"""

import time
from typing import Any, Dict, Optional

import jwt

from storefront_payments.config import settings

ALGO = "HS256"


def mint_user_jwt(sub: str, claims: Optional[Dict[str, Any]] = None) -> str:
    now = int(time.time())
    payload = {
        "iss": settings.jwt_issuer,
        "sub": sub,
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
        **(claims or {}),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a user token.

    Raises:
        jwt.PyJWTError: On bad signature, expiry, or missing claims
    """
    options = {"require": ["exp", "iat", "iss", "sub"]}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[ALGO],
        options=options,
        issuer=settings.jwt_issuer,
    )
