# marketplace/services/lock_service.py
import redis

from marketplace.utils.logging import get_logger
from marketplace.utils.retry import redis_retry
from marketplace.utils.settings import REDIS_URL

logger = get_logger(__name__)

#compare-and-delete in one Lua script, redis runs it atomically
#nobody can sneak in between GET and DEL
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    -named lock with owner token (SET NX EX)
    -release only by the owner
    -expires by itself if the owner dies
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire(self, name: str, owner: str, ttl: int) -> bool:
        key = f"lock:{name}"
        logger.info(f"Acquire lock {key} for {owner}")
        #SET lock:sweep "worker-1" NX EX 55
        return bool(
            self.redis.set(
                name=key,
                value=owner,
                nx=True,
                ex=ttl,
            )
        )

    @redis_retry()
    def release(self, name: str, owner: str) -> bool:
        key = f"lock:{name}"
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)
