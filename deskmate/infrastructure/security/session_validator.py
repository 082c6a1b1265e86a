"""
Session identity validation.

Identity is issued upstream; this module only checks that what arrives is
usable before anything touches per-user data.
"""

from typing import Optional, Tuple
import re

import structlog

from deskmate.domain.errors import AuthenticationError, InvalidSessionError

logger = structlog.get_logger(__name__)

# Ids become path segments of per-user collections
_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-.@:]{1,128}$")


def _clean(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value if value and _ID_PATTERN.match(value) else None


def verify_user(user_id: Optional[str]) -> str:
    """
    Validate a caller's user id

    Raises:
        AuthenticationError: If the id is missing or malformed
    """

    cleaned = _clean(user_id)
    if not cleaned:
        logger.warning("Rejected request without valid user id")
        raise AuthenticationError("Not authenticated")
    return cleaned


def verify_session(user_id: Optional[str], session_id: Optional[str]) -> Tuple[str, str]:
    """
    Validate the (user, session) pair of a join request

    Raises:
        InvalidSessionError: If either id is missing or malformed
    """

    user, session = _clean(user_id), _clean(session_id)
    if not user or not session:
        logger.warning("Rejected join", has_user=bool(user), has_session=bool(session))
        raise InvalidSessionError("Invalid session")
    return user, session
