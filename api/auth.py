import hmac
import hashlib
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from core.config import settings
from core.exceptions import AuthenticationError, AuthorizationError
from core.logger import logger
from models.user import ROLE_ADMIN, ROLE_STUDENT


@dataclass
class CurrentUser:
    id: int
    role: str


def _sign(data: str) -> str:
    return hmac.new(settings.SECRET_KEY.encode(), data.encode(), hashlib.sha256).hexdigest()


def create_access_token(user_id: int, role: str = ROLE_STUDENT, issued_at: Optional[int] = None) -> str:
    """Format: {user_id}:{role}:{timestamp}:{signature}"""
    timestamp = int(time.time()) if issued_at is None else issued_at
    data = f"{user_id}:{role}:{timestamp}"
    return f"{data}:{_sign(data)}"


def verify_token(token: str) -> Optional[CurrentUser]:
    """Verify a signed access token and return who it belongs to."""
    if not token:
        return None

    parts = token.split(':')
    if len(parts) != 4:
        return None

    user_id_str, role, timestamp_str, signature = parts
    try:
        user_id = int(user_id_str)
        issued_at = int(timestamp_str)
    except ValueError:
        return None

    if int(time.time()) - issued_at > settings.ACCESS_TOKEN_TTL_SECONDS:
        logger.warning("Token expired", user_id=user_id)
        return None

    expected = _sign(f"{user_id_str}:{role}:{timestamp_str}")
    if not hmac.compare_digest(expected, signature):
        logger.warning("Token signature mismatch", user_id=user_id)
        return None

    return CurrentUser(id=user_id, role=role)


def get_current_user(authorization: str = Header(None)) -> CurrentUser:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationError("No token provided")

    user = verify_token(authorization.split(" ", 1)[1].strip())
    if not user:
        raise AuthenticationError("Invalid or expired token")
    return user


def require_role(*roles: str):
    def dependency(authorization: str = Header(None)) -> CurrentUser:
        user = get_current_user(authorization)
        if user.role not in roles:
            logger.warning("Insufficient permissions", user_id=user.id, role=user.role, required=roles)
            raise AuthorizationError("Insufficient permissions")
        return user
    return dependency


require_student = require_role(ROLE_STUDENT)
require_admin = require_role(ROLE_ADMIN)
