# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the Redis backend cannot serve a request."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class FastRedisClient:
    """Pooled Redis client shared by the content cache, the job register and the worker queue."""

    # KEYS[1]: key, ARGV[1]: expected value
    DELETE_IF_EQUALS_LUA_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:20] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info(
                "Redis client initialized successfully",
                max_connections=settings.REDIS_MAX_CONNECTIONS,
            )

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise CacheUnavailableError("Redis initialization failed", operation="initialize") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except (CacheUnavailableError, redis.RedisError) as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except redis.RedisError as e:
            logger.error("Redis GET failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"GET failed: {e}", operation="get") from e

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except redis.RedisError as e:
            logger.error("Redis SET failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"SET failed: {e}", operation="set") from e

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """Atomic SET NX with expiry; True when this caller created the key."""
        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value, ex=ttl_s, nx=True)
            return bool(result)
        except redis.RedisError as e:
            logger.error("Redis SET NX failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"SET NX failed: {e}", operation="set_nx") from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except redis.RedisError as e:
            logger.error("Redis DELETE failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"DELETE failed: {e}", operation="delete") from e

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete key only while it still holds value (lock release)."""
        try:
            await self._ensure_initialized()
            result = await self.client.eval(self.DELETE_IF_EQUALS_LUA_SCRIPT, 1, key, value)
            return bool(result)
        except redis.RedisError as e:
            logger.error("Redis compare-and-delete failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"DELETE IF EQUALS failed: {e}", operation="delete_if_equals") from e

    async def push(self, key: str, value: str) -> int:
        """Append a value to a list (worker queue)."""
        try:
            await self._ensure_initialized()
            return int(await self.client.rpush(key, value))
        except redis.RedisError as e:
            logger.error("Redis RPUSH failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"RPUSH failed: {e}", operation="push") from e

    async def pop_blocking(self, key: str, timeout_s: int) -> str | None:
        """Pop the oldest list value, waiting up to timeout_s seconds."""
        try:
            await self._ensure_initialized()
            result = await self.client.blpop([key], timeout=timeout_s)
            return result[1] if result else None
        except redis.RedisError as e:
            logger.error("Redis BLPOP failed", key=key[:40], error=str(e))
            raise CacheUnavailableError(f"BLPOP failed: {e}", operation="pop") from e


# Global instance
fast_redis = FastRedisClient()
