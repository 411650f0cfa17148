from datetime import datetime, timedelta, timezone
from functools import lru_cache

import jwt

from booking.core import config


@lru_cache(maxsize=1)
def get_jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url, cache_keys=True)


def create_access_token(subject: str, expires_minutes: int | None = None, extra_claims: dict | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "exp": now + timedelta(minutes=expire_minutes), "iat": now}
    if config.JWT_ISSUER:
        payload["iss"] = config.JWT_ISSUER
    if config.JWT_AUDIENCE:
        payload["aud"] = config.JWT_AUDIENCE
    payload.update(extra_claims or {})
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Validate a bearer token and return its claims.

    Tokens from an external identity provider are checked against the keys
    published at ``JWT_JWKS_URL``; otherwise the shared secret is used.
    Raises ``jwt.InvalidTokenError`` for anything that does not verify.
    """
    if config.JWT_JWKS_URL:
        key = get_jwks_client(config.JWT_JWKS_URL).get_signing_key_from_jwt(token).key
    else:
        key = config.JWT_SECRET_KEY

    return jwt.decode(
        token,
        key,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
        issuer=config.JWT_ISSUER,
        options={"require": ["exp", "sub"]},
    )
