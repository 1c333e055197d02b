from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courtside.core.auth_utils import Principal, decode_token, principal_from_payload
from courtside.core.exceptions import HTTP_STATUS, Result
from courtside.models.enums import ActorRole

security = HTTPBearer()


def get_settings(request: Request):
    return request.app.state.settings


def get_db(request: Request):
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_gateway(request: Request):
    return request.app.state.gateway


def get_cache(request: Request):
    return request.app.state.cache


def get_notifier(request: Request):
    return request.app.state.notifier


def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    settings = request.app.state.settings
    payload = decode_token(
        credentials.credentials, settings.jwt_secret, settings.jwt_algorithm
    )
    return principal_from_payload(payload)


def require_staff(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role not in (ActorRole.OWNER, ActorRole.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Owners or admins only")
    return principal


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != ActorRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")
    return principal


def unwrap(result: Result):
    """Value of a successful Result, or the matching HTTPException."""
    if result.ok:
        return result.value
    failure = result.failure
    raise HTTPException(status_code=HTTP_STATUS[failure.kind], detail=failure.to_dict())
