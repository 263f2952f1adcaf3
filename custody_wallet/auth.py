"""
API key check for endpoints that move funds.

With no `api_token` configured the check is off (local development only).
Once set, callers must send it in the X-API-Key header; query parameters
are never read.
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "X-API-Key"},
    )


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header),
) -> bool:
    """
    Reject the request unless the configured token was presented.

    Raises:
        HTTPException: 401 on a missing or wrong key
    """
    expected: Optional[str] = request.app.state.settings.api_token
    if not expected:
        return True

    if api_key is None:
        raise _unauthorized("Missing X-API-Key header")
    if not hmac.compare_digest(api_key.encode(), expected.encode()):
        raise _unauthorized("Invalid API token")
    return True
