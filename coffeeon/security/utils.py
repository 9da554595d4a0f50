from passlib.context import CryptContext
from datetime import datetime, timezone
import secrets
from coffeeon.core.config import settings

pwd_ctx = CryptContext(schemes=['bcrypt'], deprecated='auto', bcrypt__rounds=settings.BCRYPT_ROUNDS)

def hash_password(p: str) -> str: return pwd_ctx.hash(p)

def verify_password(p: str, h: str) -> bool: return pwd_ctx.verify(p, h)

def now_utc() -> datetime: return datetime.now(timezone.utc).replace(tzinfo=None)

def generate_session_token() -> str: return secrets.token_urlsafe(32)

def generate_reset_code() -> str: return f"{secrets.randbelow(900000) + 100000}"
