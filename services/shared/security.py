import os
import time

from fastapi import Header, HTTPException, Depends
from jose import jwt, JWTError, ExpiredSignatureError

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")
ALGO = "HS256"

JWT_ISSUER = os.getenv("JWT_ISSUER")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def decode_token(token: str) -> dict:
    options = {"verify_aud": bool(JWT_AUDIENCE)}
    return jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[ALGO],
        audience=JWT_AUDIENCE,
        issuer=JWT_ISSUER,
        options=options,
    )


def make_token(user_id: str, ttl_seconds: int = 3600, **extra) -> str:
    """Issue an access token the way the auth service does (dev and tests)."""
    now = int(time.time())
    payload = {"sub": str(user_id), "iat": now, "exp": now + ttl_seconds, **extra}
    if JWT_ISSUER:
        payload["iss"] = JWT_ISSUER
    if JWT_AUDIENCE:
        payload["aud"] = JWT_AUDIENCE
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGO)


def require_user(authorization: str = Header(default=None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="user not authenticated")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="user not authenticated")

    try:
        claims = decode_token(token)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return claims


def current_user_id(claims: dict = Depends(require_user)) -> str:
    return str(claims["sub"])
