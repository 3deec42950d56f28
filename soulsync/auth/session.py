"""
session.py
----------
Purpose:
    Identify the calling client session and seed its token store.

Notes:
    - The backend validates bearer tokens; this service only forwards them.
    - `X-Session-Id` keys the persisted tokens and the one-shot refresh flag.
    - A bearer token or `X-Refresh-Token` on any request replaces the stored one.
"""

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from soulsync.services.token_store import TokenStore

_security = HTTPBearer(auto_error=False)


async def session_dependency(
    x_session_id: str | None = Header(default=None),
    x_refresh_token: str | None = Header(default=None),
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> str:
    session_id = (x_session_id or "").strip()
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Session-Id header"
        )

    token_store = TokenStore(session_id)
    if credentials is not None and credentials.credentials:
        await token_store.save_access_token(credentials.credentials)
    if x_refresh_token:
        await token_store.save_refresh_token(x_refresh_token)

    return session_id
