from dataclasses import dataclass

from fastapi import HTTPException
from jose import JWTError, jwt

from courtside.models.enums import ActorRole


@dataclass(frozen=True)
class Principal:
    """Authenticated actor behind a request (or the system itself)."""

    id: int
    role: ActorRole


SYSTEM = Principal(id=0, role=ActorRole.SYSTEM)


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> dict:
    if not secret:
        raise HTTPException(status_code=401, detail="Token verification not configured")

    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])

        if "sub" not in payload or "role" not in payload:
            raise HTTPException(status_code=401, detail="Invalid token payload")

        return payload

    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def principal_from_payload(payload: dict) -> Principal:
    try:
        role = ActorRole(payload["role"])
        user_id = int(payload["sub"])
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid role")

    if role == ActorRole.SYSTEM:
        raise HTTPException(status_code=401, detail="Invalid role")

    return Principal(id=user_id, role=role)
