"""Bearer-token authorization for the HTTP API.

The ledger core trusts whatever user id it is given; this module decides
which user ids a caller may act as before the core is invoked.
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass
from typing import Any, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)

ADMIN_ROLE = "admin"

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: Optional[int]
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def can_act_as(self, user_id: int) -> bool:
        return self.is_admin or (self.user_id is not None and self.user_id == user_id)


def issue_token(user_id: int, role: Optional[str] = None, ttl_minutes: Optional[int] = None) -> str:
    ttl = ttl_minutes or settings.jwt_ttl_minutes
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl * 60,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret.get_secret_value(), algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Validate the signature and expiry, returning the claims."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
    except InvalidTokenError as exc:
        raise ValueError("Invalid token") from exc


def _subject_user_id(claims: dict[str, Any]) -> Optional[int]:
    # sub may arrive as "42" or 42
    sub = claims.get("sub")
    if isinstance(sub, bool):
        return None
    if isinstance(sub, (int, float)):
        return int(sub)
    if isinstance(sub, str):
        try:
            return int(sub)
        except ValueError:
            return None
    return None


def get_principal(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Principal:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        claims = decode_token(credentials.credentials)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    role = claims.get("role")
    return Principal(user_id=_subject_user_id(claims), role=role if isinstance(role, str) else None)


def authorize_user(principal: Principal, user_id: int) -> None:
    """Only the account owner or an admin may act on ``user_id``."""
    if not principal.can_act_as(user_id):
        logger.warning("access_denied", subject=principal.user_id, target=user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue an API bearer token")
    parser.add_argument("--sub", type=int, required=True, help="subject user id")
    parser.add_argument("--role", default=None, help="optional role claim (e.g. admin)")
    parser.add_argument("--ttl", type=int, default=None, help="token ttl in minutes")
    args = parser.parse_args()
    print(issue_token(args.sub, role=args.role, ttl_minutes=args.ttl))
