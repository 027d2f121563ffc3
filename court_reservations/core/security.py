from datetime import datetime, timedelta, timezone

from jose import jwt

from court_reservations.core.config import settings

# Tokens are issued by the identity provider; this service only verifies them.
# create_access_token exists for local tooling and tests that need a signed token.
ALGO = "HS256"

ROLE_CLIENT = "client"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"


def create_access_token(subject: str, role: str, expires_minutes: int = 30) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "role": role, "type": "access", "exp": exp}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
