"""FastAPI dependencies shared by the REST routes."""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from deskmate.application.container import Services
from deskmate.domain.errors import AuthenticationError
from deskmate.infrastructure.security.session_validator import verify_user


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Caller identity from the X-User-Id header.

    Session issuance lives outside this service; a fronting gateway sets the
    header once the caller is authenticated.
    """
    try:
        return verify_user(x_user_id)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
