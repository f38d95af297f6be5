"""
FastAPI dependencies shared by the routers.

Authentication is mocked: a non-empty bearer token in the Authorization header
marks the caller as logged in. There is no token verification.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from .services.rate_limiter import client_id_from_headers
from .services.session import ConversionSession, Requester, SessionStore, get_session_store


def get_requester(
    x_forwarded_for: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> Requester:
    """Build the rate-limit identity and login status of the caller."""
    is_authenticated = False
    if authorization:
        scheme, _, token = authorization.partition(" ")
        is_authenticated = scheme.lower() == "bearer" and bool(token.strip())
    return Requester(
        client_id=client_id_from_headers(x_forwarded_for),
        is_authenticated=is_authenticated,
    )


def get_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> ConversionSession:
    """Resolve a session id or answer 404."""
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
