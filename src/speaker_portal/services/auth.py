"""Credential verification for HTTP requests and live channels.

Tokens are issued elsewhere; here we only check the signature and map the
``sub`` claim to a known user.
"""

from uuid import UUID

import jwt
import structlog

from ..config import Settings
from ..domain.errors import NotAuthorized
from ..domain.models import User
from ..repositories.base import UserDirectory

logger = structlog.get_logger()


def decode_credential(token: str, settings: Settings) -> UUID:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]},
            leeway=60,
        )
        return UUID(str(payload["sub"]))
    except jwt.ExpiredSignatureError:
        raise NotAuthorized("Token expired")
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.info("credential_rejected", error=str(e))
        raise NotAuthorized("Invalid token")


async def authenticate(token: str, settings: Settings, directory: UserDirectory) -> User:
    if not token:
        raise NotAuthorized("Access token required")
    user_id = decode_credential(token, settings)
    user = await directory.get_user(user_id)
    if user is None:
        raise NotAuthorized("Invalid token")
    return user
