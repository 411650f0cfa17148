import redis

from booking.auth import jwt_handler
from booking.rate_limiter import FixedWindowRateLimiter, InMemoryWindowStore, RedisWindowStore


class _FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakePipeline:
    def __init__(self, client):
        self._client = client
        self._commands = []

    def incr(self, key):
        self._commands.append(('incr', key))

    def ttl(self, key):
        self._commands.append(('ttl', key))

    def execute(self):
        results = [getattr(self._client, name)(key) for name, key in self._commands]
        self._commands = []
        return results


class _FakeRedis:
    def __init__(self):
        self.counts = {}
        self.expiries = {}

    def pipeline(self):
        return _FakePipeline(self)

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def ttl(self, key):
        return self.expiries.get(key, -1)

    def expire(self, key, seconds):
        self.expiries[key] = seconds


class _BrokenRedisStore:
    def hit(self, key, window_seconds):
        raise redis.ConnectionError('Connection refused')


def test_in_memory_limiter_allows_limit_then_rejects() -> None:
    limiter = FixedWindowRateLimiter(limit=100, window_seconds=60, store=InMemoryWindowStore(_FakeClock()))

    decisions = [limiter.check('client-123') for _ in range(101)]

    assert all(decision.allowed for decision in decisions[:100])
    assert not decisions[100].allowed
    assert decisions[100].retry_after == 60
    assert decisions[99].remaining == 0


def test_in_memory_limiter_partitions_by_identity() -> None:
    limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, store=InMemoryWindowStore(_FakeClock()))

    assert limiter.check('client-a').allowed
    assert not limiter.check('client-a').allowed
    assert limiter.check('client-b').allowed


def test_in_memory_limiter_resets_after_window() -> None:
    clock = _FakeClock()
    limiter = FixedWindowRateLimiter(limit=2, window_seconds=60, store=InMemoryWindowStore(clock))

    limiter.check('client-123')
    limiter.check('client-123')
    assert not limiter.check('client-123').allowed

    clock.now += 30
    rejected = limiter.check('client-123')
    assert not rejected.allowed
    assert rejected.retry_after == 30

    clock.now += 30
    assert limiter.check('client-123').allowed


def test_redis_store_sets_expiry_on_new_window() -> None:
    client = _FakeRedis()
    limiter = FixedWindowRateLimiter(limit=2, window_seconds=60, store=RedisWindowStore(client))

    first = limiter.check('client-123')
    limiter.check('client-123')
    third = limiter.check('client-123')

    assert first.allowed
    assert not third.allowed
    assert client.expiries == {'rate_limit:client-123': 60}


def test_101st_request_in_window_is_throttled(client, auth_headers) -> None:
    statuses = [client.get('/api/appointments', headers=auth_headers).status_code for _ in range(100)]
    throttled = client.get('/api/appointments', headers=auth_headers)

    assert statuses == [200] * 100
    assert throttled.status_code == 429
    assert int(throttled.headers['retry-after']) > 0


def test_throttling_one_identity_does_not_affect_another(client, auth_headers) -> None:
    for _ in range(101):
        client.get('/api/appointments', headers=auth_headers)

    other_token = jwt_handler.create_access_token('client-456')
    response = client.get('/api/appointments', headers={'Authorization': f'Bearer {other_token}'})

    assert response.status_code == 200


def test_rate_limit_backend_failure_denies_request(client, auth_headers, rate_limiter) -> None:
    rate_limiter.store = _BrokenRedisStore()

    response = client.get('/api/appointments', headers=auth_headers)

    assert response.status_code == 503
