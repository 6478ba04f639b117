from storefront_auth.config import reset_settings_cache
from storefront_auth.service import runtime as runtime_module
from storefront_auth.storage.memory import MemoryRateLimitStore


class RecordingRedisStore:
    instances: list = []
    fail_verify = False

    def __init__(self, redis_url, *, socket_timeout=5.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        RecordingRedisStore.instances.append(self)

    def verify_connection(self):
        if self.fail_verify:
            raise ConnectionError("redis unreachable")

    async def close(self):
        pass


def _build_runtime(monkeypatch, backend, *, fail_verify=False):
    RecordingRedisStore.instances = []
    RecordingRedisStore.fail_verify = fail_verify
    monkeypatch.setattr(runtime_module, "RedisRateLimitStore", RecordingRedisStore)
    monkeypatch.setenv("REDIS_URL", "redis://:hunter2@cache.internal:6379/0")
    monkeypatch.setenv("REDIS_TIMEOUT_SECONDS", "0.75")
    monkeypatch.setenv("COMMERCE_TIMEOUT_SECONDS", "9")
    reset_settings_cache()
    return runtime_module.Runtime(backend=backend)


def test_redis_store_uses_its_own_timeout(monkeypatch, backend):
    runtime = _build_runtime(monkeypatch, backend)
    (store,) = RecordingRedisStore.instances
    assert store.socket_timeout == 0.75
    assert runtime.rate_limit_store is store
    assert runtime.settings.commerce_timeout_seconds == 9


def test_unreachable_redis_falls_back_to_memory_in_test_mode(monkeypatch, backend):
    runtime = _build_runtime(monkeypatch, backend, fail_verify=True)
    assert runtime.redis is None
    assert isinstance(runtime.rate_limit_store, MemoryRateLimitStore)


def test_mask_url_password():
    masked = runtime_module._mask_url_password("redis://:hunter2@cache.internal:6379/0")
    assert "hunter2" not in masked
    assert masked == "redis://:***@cache.internal:6379/0"
