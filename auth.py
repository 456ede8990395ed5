"""
Token issue and verification.

The role travels as a signed claim in the token. Request handlers authorize
from the verified claim only and never from user documents, so a writable
profile cannot grant itself admin or vendor rights.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from errors import ValidationError

security = HTTPBearer()

# bcrypt only looks at the first 72 bytes and refuses anything longer.
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str
    name: str = ""
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# Used for transitions driven by the payment provider rather than a person.
SYSTEM = Identity(uid="system", email="", name="system", role="admin")


def hash_password(password: str) -> str:
    raw = password.encode()
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode()


def check_password(password: str, password_hash: str) -> bool:
    raw = password.encode()
    if len(raw) > MAX_PASSWORD_BYTES or not password_hash:
        return False
    try:
        return bcrypt.checkpw(raw, password_hash.encode())
    except ValueError:
        # stored hash is not a bcrypt hash
        return False


def create_token(identity: Identity) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS)
    payload = {
        "sub": identity.uid,
        "email": identity.email,
        "name": identity.name,
        "role": identity.role,
        "exp": exp,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return Identity(
        uid=payload["sub"],
        email=payload.get("email", ""),
        name=payload.get("name", ""),
        role=payload.get("role", "customer"),
    )


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Identity:
    return decode_token(credentials.credentials)


def require_admin(user: Identity = Depends(get_current_user)) -> Identity:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def require_staff(user: Identity = Depends(get_current_user)) -> Identity:
    if user.role not in ("admin", "vendor"):
        raise HTTPException(status_code=403, detail="Admin or vendor only")
    return user
