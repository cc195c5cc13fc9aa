import logging
import os
import time
from typing import Any, Dict, Optional

import requests
from fastapi import HTTPException, Request
from jose import JWTError, jwt

from Advisor.errors import Unauthorized

logger = logging.getLogger(__name__)

_JWKS_CACHE: Optional[Dict[str, Any]] = None
_JWKS_CACHE_TS: float = 0.0
_JWKS_TTL_SECONDS: int = 300


# Reads JWT configuration from env: a JWKS URL (RS256) or a shared secret (HS256)
def _get_auth_config() -> tuple[Optional[str], Optional[str], Optional[str]]:
    jwks_url = os.getenv("AUTH_JWKS_URL") or None
    secret = os.getenv("AUTH_JWT_SECRET") or None
    if not jwks_url and not secret:
        raise HTTPException(status_code=500, detail="AUTH_JWKS_URL or AUTH_JWT_SECRET must be configured.")

    audience = os.getenv("AUTH_AUDIENCE") or None
    return jwks_url, secret, audience


# Fetches JWKS keys (cached for a short TTL) so we can validate incoming JWT signatures
def get_jwks(jwks_url: str):
    global _JWKS_CACHE, _JWKS_CACHE_TS
    now = time.time()
    if _JWKS_CACHE is not None and (now - _JWKS_CACHE_TS) < _JWKS_TTL_SECONDS:
        return _JWKS_CACHE.get("keys", [])
    try:
        response = requests.get(jwks_url, timeout=3.0)
        response.raise_for_status()
        data = response.json()
        _JWKS_CACHE = data
        _JWKS_CACHE_TS = now
        return data.get("keys", [])
    except requests.RequestException as e:
        if _JWKS_CACHE is not None:
            return _JWKS_CACHE.get("keys", [])
        raise HTTPException(status_code=503, detail=f"Unable to fetch JWKS: {str(e)}")


# Finds the JWK that matches the JWT header `kid` so `jwt.decode()` can verify the signature
def get_public_key(token: str, jwks_url: str):
    jwks = get_jwks(jwks_url)
    unverified_header = jwt.get_unverified_header(token)
    for key in jwks:
        if key.get("kid") == unverified_header.get("kid"):
            return key
    raise Unauthorized("Public key not found.")


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        raise Unauthorized("Missing or invalid token.")

    token = auth_header.split(" ", 1)[1].strip()
    if token.count(".") != 2:
        raise Unauthorized("Token is not a valid JWT.")
    return token


# Verifies the bearer token from the Authorization header and returns decoded JWT claims
def verify_jwt(request: Request) -> Dict[str, Any]:
    jwks_url, secret, audience = _get_auth_config()
    token = _bearer_token(request)
    options = {} if audience else {"verify_aud": False}

    try:
        if jwks_url:
            key = get_public_key(token, jwks_url)
            issuer = jwks_url.split("/.well-known/")[0]
            return jwt.decode(token, key, algorithms=["RS256"], audience=audience, issuer=issuer, options=options)
        return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)
    except JWTError as e:
        raise Unauthorized(f"Token verification failed: {str(e)}")


# FastAPI dependency: the acting user's id, threaded explicitly into every service call
def get_requester_id(request: Request) -> str:
    claims = verify_jwt(request)
    user_id = claims.get("sub")
    if not user_id:
        logger.warning("Verified token carries no `sub` claim.")
        raise Unauthorized()
    return str(user_id)
