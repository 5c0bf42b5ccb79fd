"""
Redis access: read caches for the menu and tables, and the session store
that holds serialized carts.
"""
import os
import json
import time
import logging
import redis
from typing import Optional, List, Dict, Any, Tuple

import errors

logger = logging.getLogger(__name__)

CART_TTL_SECONDS = int(os.getenv("CART_TTL_SECONDS", "1800"))


def _redis_enabled() -> bool:
    return os.getenv("REDIS_ENABLED", "true").strip().lower() not in ("0", "false", "no", "off")


class RedisClient:
    """Thin wrapper over redis.Redis that degrades when the server is down."""

    def __init__(self):
        self.redis_host = os.getenv("REDIS_HOST", "redis")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = int(str(redis_port_env).split(":")[-1])
        self.client = None

        if not _redis_enabled():
            logger.info("Redis disabled by REDIS_ENABLED")
            return

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.warning(f"Could not connect to Redis at {self.redis_host}:{self.redis_port}: {e}")
            self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Menu cache ==========

    def cache_menu(self, items: List[Dict], ttl: int = 300) -> bool:
        """
        Cache the list of available menu items.
        ttl: seconds, five minutes by default
        """
        return self._set_json("menu:available", items, ttl)

    def get_cached_menu(self) -> Optional[List[Dict]]:
        return self._get_json("menu:available")

    def invalidate_menu_cache(self) -> bool:
        return self._delete("menu:available")

    # ========== Tables cache ==========

    def cache_tables(self, tables: List[Dict], ttl: int = 60) -> bool:
        return self._set_json("tables:all", tables, ttl)

    def get_cached_tables(self) -> Optional[List[Dict]]:
        return self._get_json("tables:all")

    def invalidate_tables_cache(self) -> bool:
        return self._delete("tables:all", "tables:available")

    # ========== Helpers ==========

    def _set_json(self, key: str, value: Any, ttl: int) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.warning(f"Error caching {key}: {e}")
            return False

    def _get_json(self, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            cached = self.client.get(key)
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning(f"Error reading {key} from cache: {e}")
        return None

    def _delete(self, *keys: str) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning(f"Error invalidating {', '.join(keys)}: {e}")
            return False

    def get_cache_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable"}

        try:
            return {
                "status": "available",
                "menu_cached": self.client.exists("menu:available"),
                "tables_cached": self.client.exists("tables:all"),
                "active_carts": len(self.client.keys("cart:*")),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


class CartStore:
    """Session store for cart blobs keyed by session id.

    Uses Redis when it is configured. With Redis disabled the blobs stay in
    this process, which only suits a single worker or tests; they expire
    after the same idle TTL. Unlike the caches above, a failing write
    raises StoreError.
    """

    def __init__(self, client: RedisClient, ttl: int = CART_TTL_SECONDS):
        self.redis = client
        self.ttl = ttl
        # session id -> (expires at, blob)
        self._local: Dict[str, Tuple[float, str]] = {}

    @staticmethod
    def _key(session_id: str) -> str:
        return f"cart:{session_id}"

    def _purge_expired(self) -> None:
        now = time.monotonic()
        for session_id in [sid for sid, (expires_at, _) in self._local.items() if expires_at <= now]:
            del self._local[session_id]

    def get(self, session_id: str) -> Optional[str]:
        if self.redis.client is None:
            self._purge_expired()
            entry = self._local.get(session_id)
            return entry[1] if entry is not None else None
        try:
            return self.redis.client.get(self._key(session_id))
        except redis.RedisError as e:
            raise errors.StoreError(f"Error loading cart: {e}") from e

    def set(self, session_id: str, blob: str) -> None:
        if self.redis.client is None:
            self._purge_expired()
            self._local[session_id] = (time.monotonic() + self.ttl, blob)
            return
        try:
            self.redis.client.setex(self._key(session_id), self.ttl, blob)
        except redis.RedisError as e:
            raise errors.StoreError(f"Error saving cart: {e}") from e

    def remove(self, session_id: str) -> None:
        if self.redis.client is None:
            self._local.pop(session_id, None)
            return
        try:
            self.redis.client.delete(self._key(session_id))
        except redis.RedisError as e:
            raise errors.StoreError(f"Error removing cart: {e}") from e


redis_client = RedisClient()
cart_store = CartStore(redis_client)
