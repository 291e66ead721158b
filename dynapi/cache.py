# cache.py: redis response cache
#
# Cache key structure:
#
#     dynapi_cache:<operation type>::<entity name>::<sha1 of the request signature>  -> JSON response
#
# The request signature is the path, the sorted query string arguments, the scope of the caller
# (its roles) and, for POST requests, the body.
# Responses expire after the cache timeout, writes invalidate all the cached responses of an entity.
import hashlib
import json
from typing import Any, Iterator, List, Optional
import redis
import dynapi
from .json_encoder import _DynApiJSONEncoder

KEY_SEPARATOR = "::"
KEY_PREFIX = "dynapi_cache:"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_TIMEOUT = 86400  # 24 hours


class ResponseCache:
    """
    Redis store of shaped responses.
    Reads and stores fail open: when redis is unavailable the responses aren't cached.
    :param redis_url: url of the redis server
    :param timeout: number of seconds a response stays valid
    :param client: redis client, created from the url on first use if None
    """

    def __init__(self, redis_url: Optional[str] = None, timeout: Optional[int] = None, client: Optional[redis.Redis] = None) -> None:
        self.redis_url = redis_url or DEFAULT_REDIS_URL
        self.timeout = int(timeout or DEFAULT_TIMEOUT)
        self._redis = client
        self._encoder = _DynApiJSONEncoder()

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())

    def keys(self, pattern: str = "*") -> Iterator[str]:
        """
        :param pattern: glob pattern of the keys, without the prefix
        :return: the stored keys, with the prefix
        """
        return self.redis.scan_iter(match=f"{KEY_PREFIX}{pattern}")

    @staticmethod
    def make_key(op_type: str, entity_name: str, context: Any, scope: str = "") -> str:
        """
        :param context: RequestContext of the request
        :param scope: visibility scope of the caller, responses are never shared between scopes
        :return: cache key
        """
        signature = {"path": context.path, "query": [list(item) for item in context.query], "scope": scope}
        if context.method == "POST":
            signature["body"] = context.body
        digest = hashlib.sha1(json.dumps(signature, sort_keys=True, default=str).encode()).hexdigest()
        return KEY_SEPARATOR.join((op_type, entity_name, digest))

    def get(self, key: str) -> Optional[Any]:
        """
        :return: the cached value, None on a miss
        """
        try:
            raw = self.redis.get(f"{KEY_PREFIX}{key}")
        except redis.RedisError as exc:
            dynapi.log.warning(f"Cache get failed: {exc}")
            return None
        if raw is None:
            return None
        dynapi.log.debug(f"Cache hit {key}")
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self.redis.setex(f"{KEY_PREFIX}{key}", self.timeout, json.dumps(value, default=self._encoder.default))
        except redis.RedisError as exc:
            dynapi.log.warning(f"Cache set failed: {exc}")

    def delete_entity(self, entity_name: str) -> int:
        """
        Invalidate the cached responses of an entity
        :return: number of removed entries
        """
        keys = list(self.keys(f"*{KEY_SEPARATOR}{entity_name}{KEY_SEPARATOR}*"))
        self._delete(keys)
        if keys:
            dynapi.log.debug(f"Cleared {len(keys)} cached responses of {entity_name}")
        return len(keys)

    def clear(self) -> None:
        self._delete(list(self.keys()))

    def _delete(self, keys: List[str]) -> None:
        if keys:
            self.redis.delete(*keys)
