from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from assessment_engine.core.security import TokenDecodeError, decode_access_token
from assessment_engine.models.constants import STAFF_ROLE_VALUES


# Tokens are issued by the platform's identity service; this engine only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl='/api/v1/auth/token', auto_error=True)


@dataclass(frozen=True)
class CurrentIdentity:
    user_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & set(STAFF_ROLE_VALUES))


def get_current_identity(token: str = Depends(oauth2_scheme)) -> CurrentIdentity:
    try:
        payload = decode_access_token(token)
        subject = payload.get('sub')
        if not subject:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid access token subject')
        user_id = UUID(subject)
    except (TokenDecodeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid access token') from exc

    roles = payload.get('roles') or []
    if not isinstance(roles, list):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid access token roles')
    return CurrentIdentity(user_id=user_id, roles=frozenset(str(role) for role in roles))


def require_roles(*required_roles: str) -> Callable:
    required_set = set(required_roles)

    def role_checker(identity: CurrentIdentity = Depends(get_current_identity)) -> CurrentIdentity:
        if 'admin' in identity.roles:
            return identity

        if not required_set.intersection(identity.roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Insufficient role permissions',
            )
        return identity

    return role_checker


require_staff = require_roles(*STAFF_ROLE_VALUES)
