from redis.asyncio import Redis


async def check_rate_limit(redis: Redis, key: str, limit: int, window: int) -> bool:
    current = await redis.incr(key)
    if current == 1:
        await redis.expire(key, window)
    return current <= limit


class PinAttemptGuard:
    """Caps PIN submissions per recognized user inside a fixed redis window."""

    def __init__(self, redis: Redis, limit: int = 5, window: int = 300):
        self.redis = redis
        self.limit = limit
        self.window = window

    async def allow(self, user_id: str) -> bool:
        return await check_rate_limit(self.redis, f"pin_attempts:{user_id}", self.limit, self.window)

    async def clear(self, user_id: str) -> None:
        await self.redis.delete(f"pin_attempts:{user_id}")
