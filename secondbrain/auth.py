import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from secondbrain.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _extract_token(header: str) -> str:
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip()
    return header.strip()


def get_owner_id(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the bearer token on the request to the owner id it was issued for."""
    if not authorization:
        raise HTTPException(status_code=401, detail="No token provided")
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT secret is not configured")

    token = _extract_token(authorization)
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.InvalidTokenError as exc:
        logger.debug("JWT verification failed: %s", exc)
        raise HTTPException(
            status_code=403, detail="Invalid or expired token"
        ) from exc

    owner_id = payload.get("id")
    if not owner_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return str(owner_id)
