import json
from dataclasses import dataclass, asdict
from typing import Optional
from redis import Redis
from coffeeon.core.config import settings


@dataclass(frozen=True)
class Session:
    id: str
    email: str


def get_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


def session_key(token: str) -> str:
    return f"session:{token}"


class SessionStore:
    """Login sessions shared by every process through Redis, expired by TTL."""

    def __init__(self, client: Redis):
        self.client = client

    def get(self, token: str) -> Optional[Session]:
        raw = self.client.get(session_key(token))
        if raw is None:
            return None
        try:
            return Session(**json.loads(raw))
        except (ValueError, TypeError):
            return None

    def set(self, token: str, session: Session, ttl: int):
        self.client.setex(session_key(token), ttl, json.dumps(asdict(session)))

    def delete(self, token: str):
        self.client.delete(session_key(token))
