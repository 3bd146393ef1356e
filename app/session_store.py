# app/session_store.py
"""Refresh token storage.

Each refresh token is stored under `refresh_token:{token}` with a TTL, and
every user has a set `user_refresh_tokens:{user_id}` listing their live
tokens so logout-all can find them without scanning the keyspace.
"""
import json
import logging
import time
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import redis

from .config import get_settings

logger = logging.getLogger("security")

TOKEN_PREFIX = "refresh_token:"
USER_INDEX_PREFIX = "user_refresh_tokens:"


class TokenStore(Protocol):
    def store(self, token: str, data: Dict[str, Any], ttl_seconds: int) -> None: ...

    def get(self, token: str) -> Optional[Dict[str, Any]]: ...

    def delete(self, token: str) -> None: ...

    def delete_all_for_user(self, user_id: str) -> int: ...


class RedisTokenStore:
    def __init__(self, client: redis.Redis):
        self.client = client

    def store(self, token: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        index_key = f"{USER_INDEX_PREFIX}{data['userId']}"
        pipe = self.client.pipeline()
        pipe.setex(f"{TOKEN_PREFIX}{token}", ttl_seconds, json.dumps(data))
        pipe.sadd(index_key, token)
        pipe.expire(index_key, ttl_seconds)
        pipe.execute()

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(f"{TOKEN_PREFIX}{token}")
        return json.loads(raw) if raw else None

    def delete(self, token: str) -> None:
        data = self.get(token)
        pipe = self.client.pipeline()
        pipe.delete(f"{TOKEN_PREFIX}{token}")
        if data:
            pipe.srem(f"{USER_INDEX_PREFIX}{data['userId']}", token)
        pipe.execute()

    def delete_all_for_user(self, user_id: str) -> int:
        index_key = f"{USER_INDEX_PREFIX}{user_id}"
        tokens = self.client.smembers(index_key)
        pipe = self.client.pipeline()
        for token in tokens:
            pipe.delete(f"{TOKEN_PREFIX}{token}")
        pipe.delete(index_key)
        pipe.execute()
        return len(tokens)


class InMemoryTokenStore:
    """Process-local store used when REDIS_URL is not configured."""

    def __init__(self):
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self._expires: Dict[str, float] = {}
        self._by_user: Dict[str, set] = {}

    def store(self, token: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        self.purge_expired()
        self._tokens[token] = data
        self._expires[token] = time.monotonic() + ttl_seconds
        self._by_user.setdefault(data["userId"], set()).add(token)

    def purge_expired(self) -> int:
        now = time.monotonic()
        expired = [token for token, expires in self._expires.items() if expires <= now]
        for token in expired:
            self.delete(token)
        return len(expired)

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        expires = self._expires.get(token)
        if expires is None:
            return None
        if expires <= time.monotonic():
            self.delete(token)
            return None
        return self._tokens[token]

    def delete(self, token: str) -> None:
        data = self._tokens.pop(token, None)
        self._expires.pop(token, None)
        if data:
            tokens = self._by_user.get(data["userId"])
            if tokens is not None:
                tokens.discard(token)
                if not tokens:
                    del self._by_user[data["userId"]]

    def delete_all_for_user(self, user_id: str) -> int:
        tokens = self._by_user.pop(user_id, set())
        for token in tokens:
            self._tokens.pop(token, None)
            self._expires.pop(token, None)
        return len(tokens)


@lru_cache()
def get_token_store() -> TokenStore:
    settings = get_settings()
    if settings.redis_enabled:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Refresh tokens stored in Redis")
        return RedisTokenStore(client)
    logger.warning("REDIS_URL not set, using in-memory refresh token storage")
    return InMemoryTokenStore()
