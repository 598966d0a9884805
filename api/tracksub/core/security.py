import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography.fernet import Fernet
from jose import JWTError, jwt
from passlib.context import CryptContext

from tracksub.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"


# ─── Password hashing ──────────────────────────────────
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ─── Access tokens ─────────────────────────────────────
def create_access_token(user_id: uuid.UUID, expires_delta: timedelta | None = None) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued,
        "exp": issued + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
    }
    return jwt.encode(claims, settings.api_secret_key, algorithm=settings.algorithm)


def read_access_token(token: str) -> uuid.UUID | None:
    """User id carried by a valid, unexpired access token; None otherwise."""
    try:
        claims = jwt.decode(token, settings.api_secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    try:
        return uuid.UUID(str(claims.get("sub")))
    except ValueError:
        return None


# ─── Fernet encryption (bank access tokens at rest) ────
@lru_cache
def _fernet(key: str) -> Fernet:
    return Fernet(key.encode())


def encrypt_value(value: str) -> str:
    return _fernet(settings.encryption_key).encrypt(value.encode()).decode()


def decrypt_value(encrypted: str) -> str:
    """Raises cryptography.fernet.InvalidToken if `encrypted` was not made with the current key."""
    return _fernet(settings.encryption_key).decrypt(encrypted.encode()).decode()
