import logging
from dataclasses import dataclass
from enum import Enum

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wakili.domain.bookings.statuses import PartyRole
from wakili.infra.auth import decode_access_token
from wakili.settings import settings

logger = logging.getLogger(__name__)


class ActorRole(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    ADMIN = "admin"


@dataclass
class ActorIdentity:
    actor_id: str
    role: ActorRole

    @property
    def party_role(self) -> PartyRole:
        if self.role == ActorRole.CLIENT:
            return PartyRole.CLIENT
        if self.role == ActorRole.PROVIDER:
            return PartyRole.PROVIDER
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


security = HTTPBearer(auto_error=False)


def _build_auth_exception(detail: str = "Invalid authentication") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _authenticate_token(token: str) -> ActorIdentity:
    try:
        claims = decode_access_token(token, settings.auth_secret_key)
    except jwt.ExpiredSignatureError:
        raise _build_auth_exception("Token expired")
    except jwt.InvalidTokenError:
        raise _build_auth_exception()

    subject = claims.get("sub")
    try:
        role = ActorRole(claims.get("role"))
    except ValueError:
        logger.info("actor_auth_unknown_role", extra={"extra": {"role": claims.get("role")}})
        raise _build_auth_exception()
    if not subject:
        raise _build_auth_exception()
    return ActorIdentity(actor_id=str(subject), role=role)


async def get_actor_identity(
    request: Request, credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> ActorIdentity:
    cached: ActorIdentity | None = getattr(request.state, "actor_identity", None)
    if cached:
        return cached
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _build_auth_exception()
    identity = _authenticate_token(credentials.credentials)
    request.state.actor_identity = identity
    return identity


def require_roles(*roles: ActorRole):
    async def _require(identity: ActorIdentity = Depends(get_actor_identity)) -> ActorIdentity:
        if roles and identity.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return identity

    return _require


async def require_party(
    identity: ActorIdentity = Depends(require_roles(ActorRole.CLIENT, ActorRole.PROVIDER)),
) -> ActorIdentity:
    return identity


async def require_client(identity: ActorIdentity = Depends(require_roles(ActorRole.CLIENT))) -> ActorIdentity:
    return identity


async def require_provider(identity: ActorIdentity = Depends(require_roles(ActorRole.PROVIDER))) -> ActorIdentity:
    return identity


async def require_admin(identity: ActorIdentity = Depends(require_roles(ActorRole.ADMIN))) -> ActorIdentity:
    return identity


def assert_provider_access(identity: ActorIdentity, provider_id: str) -> None:
    if identity.role == ActorRole.ADMIN:
        return
    if identity.role == ActorRole.PROVIDER and identity.actor_id == provider_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
