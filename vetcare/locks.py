import threading
import uuid

import redis
import structlog

from .config import settings

logger = structlog.get_logger("vetcare.scheduler")

_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()

# Delete the key only if we still own it.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def _redis_client(redis_url: str) -> redis.Redis | None:
    if not redis_url:
        return None
    try:
        return redis.from_url(redis_url, decode_responses=True)
    except ValueError as exc:
        logger.warning("job_lock_redis_url_invalid", error=str(exc))
        return None


def _local_lock(name: str) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _local_locks[name] = lock
        return lock


class JobLock:
    """Non-blocking run lock so a job never overlaps with itself.

    Uses Redis when REDIS_URL is configured (shared across processes),
    otherwise a process-local lock.
    """

    def __init__(self, name: str, ttl_seconds: int | None = None, redis_url: str | None = None):
        self.name = name
        self.key = f"vetcare:job-lock:{name}"
        self.ttl_seconds = max(1, int(ttl_seconds or settings.JOB_LOCK_TTL_SECONDS))
        self._redis = _redis_client((settings.REDIS_URL if redis_url is None else redis_url).strip())
        self._token = uuid.uuid4().hex
        self._held_redis = False
        self._held_local = False

    def acquire(self) -> bool:
        if self._redis is not None:
            try:
                self._held_redis = bool(self._redis.set(self.key, self._token, nx=True, ex=self.ttl_seconds))
                return self._held_redis
            except redis.RedisError as exc:
                logger.warning("job_lock_redis_unavailable", job=self.name, error=str(exc))
        self._held_local = _local_lock(self.name).acquire(blocking=False)
        return self._held_local

    def release(self) -> None:
        if self._held_redis:
            try:
                self._redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
            except redis.RedisError as exc:
                logger.warning("job_lock_release_failed", job=self.name, error=str(exc))
            self._held_redis = False
        if self._held_local:
            _local_lock(self.name).release()
            self._held_local = False

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
