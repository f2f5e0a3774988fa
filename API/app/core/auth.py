from fastapi import HTTPException
from starlette.requests import Request

from app.core.jwt_auth import decode_token


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def require_identity(request: Request) -> str:
    """Return the caller's identity-provider user id or reject with 401."""
    token = _bearer_token(request)
    claims = decode_token(token) if token else None
    subject = (claims or {}).get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Unauthorized")
    request.state.identity = subject
    return str(subject)
