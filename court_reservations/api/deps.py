from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError

from court_reservations.core.security import decode_token, ROLE_CLIENT, ROLE_STAFF, ROLE_ADMIN

bearer = HTTPBearer(auto_error=False)

KNOWN_ROLES = (ROLE_CLIENT, ROLE_STAFF, ROLE_ADMIN)


@dataclass
class Principal:
    """Requester as asserted by the identity provider's token."""
    id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in (ROLE_STAFF, ROLE_ADMIN)


def get_current_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = payload.get("sub")
    role = payload.get("role")
    if not sub or role not in KNOWN_ROLES:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(id=str(sub), role=role)


def require_roles(*roles: str):
    def _guard(me: Principal = Depends(get_current_principal)) -> Principal:
        if me.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return me
    return _guard
