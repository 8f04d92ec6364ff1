from typing import Optional
from fastapi import HTTPException, Request, status

from . import config
from .utils.crypto import caller_id_for_token


def _extract_api_key(request: Request) -> Optional[str]:
    """Extract API key from request headers with multiple fallback formats"""
    # 1) Authorization: Bearer <key>
    auth = request.headers.get("Authorization", "")
    if auth:
        parts = auth.split(None, 1)  # ["Bearer", "<key>"] or ["<key>"]
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
        # 2) Authorization: <key> (fallback)
        if len(parts) == 1 and parts[0].lower() != "bearer":
            return parts[0].strip()

    # 3) X-API-Key: <key>
    x_key = request.headers.get("X-API-Key")
    if x_key:
        return x_key.strip()

    return None


def _is_known_key(token: Optional[str]) -> bool:
    return bool(token) and (token == config.API_KEY or token in config.USER_API_KEYS)


def get_caller(request: Request) -> Optional[str]:
    """Caller identity for the request, or None when no valid key was presented"""
    token = _extract_api_key(request)
    if not _is_known_key(token):
        return None
    return caller_id_for_token(token)


def require_key(request: Request) -> str:
    caller = get_caller(request)
    if caller is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid API key")
    return caller
