import secrets
from datetime import datetime, timedelta, timezone
from jose import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

def hash_code(code: str) -> str:
    return pwd_context.hash(code)

def verify_code(code: str, code_hash: str) -> bool:
    return pwd_context.verify(code, code_hash)

def generate_ephemeral_secret() -> str:
    return secrets.token_urlsafe(48)

def create_jwt(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data.update({"iat": int(now.timestamp()), "exp": int((now + expires_delta).timestamp())})
    return jwt.encode(data, secret, algorithm="HS256")

def decode_jwt(token: str, secret: str, audience: str | None = None) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience)
