"""Authenticated user identity for REST requests and push connections.

Credential checks live in an upstream identity service (gateway or auth
proxy). By the time a request reaches this API the caller's user ID is
carried in a header (REST) or a query parameter (WebSocket handshake);
this module only extracts it.
"""
import logging
from typing import Optional

from fastapi import Request
from starlette.requests import HTTPConnection

from app.config import get_config
from app.errors import AuthenticationError, to_http_exception

logger = logging.getLogger(__name__)


def resolve_user_id(connection: HTTPConnection) -> Optional[str]:
    """Return the caller's user ID from the identity header or query parameter.

    The header wins when both are present. Blank values count as missing.
    """
    identity = get_config().identity
    user_id = connection.headers.get(identity.header_name) or connection.query_params.get(
        identity.query_param
    )
    if user_id is None:
        return None
    user_id = user_id.strip()
    return user_id or None


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency: the authenticated user ID, or 401."""
    user_id = resolve_user_id(request)
    if user_id is None:
        logger.warning("[Auth] Rejected %s %s: no user identity", request.method, request.url.path)
        raise to_http_exception(AuthenticationError())
    return user_id
