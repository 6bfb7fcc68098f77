"""
Shared fixtures and in-test fakes for the session bootstrap tests.

The fakes stand in for the external collaborators (identity provider,
profile store, Redis, join handler) and for the clocks.
"""

import asyncio
import fnmatch
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from session_bootstrap.config import get_settings
from session_bootstrap.exceptions import ProfileStoreError, ProviderError
from session_bootstrap.models import AuthEvent, JoinResult, Session, SignOutScope, UserRecord


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeRedis:
    """Dict-backed subset of the redis client used by RedisScope."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        self.ttls.pop(key, None)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch.fnmatchcase(k, match)]

    def ping(self):
        return True


def make_session(user_id: str = "user-1", email: str = "ana@example.com", **metadata) -> Session:
    return Session(
        user_id=user_id,
        access_token=f"token-{user_id}",
        user=UserRecord(id=user_id, email=email, metadata=metadata),
    )


class FakeIdentityProvider:
    """
    Records every call in ``calls``. Emits provider events synchronously,
    the way the real SDK does.
    """

    def __init__(self, session: Optional[Session] = None):
        self.session = session
        self.redirect_session: Optional[Session] = None
        self.calls: List[Any] = []
        self.callbacks = []
        self.get_session_error: Optional[Exception] = None
        self.failing_sign_out_scopes = set()
        self.oauth_error: Optional[Exception] = None

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)

        def _unsubscribe():
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return _unsubscribe

    def emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        for callback in list(self.callbacks):
            callback(event, session)

    async def get_session(self):
        self.calls.append("get_session")
        if self.get_session_error is not None:
            raise self.get_session_error
        return self.session

    async def get_user(self):
        return self.session.user if self.session else None

    async def sign_in_with_password(self, email, password):
        self.calls.append(("sign_in_with_password", email))
        self.session = make_session("user-1", email)
        self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_up(self, email, password, metadata):
        self.calls.append(("sign_up", email, dict(metadata)))
        self.session = make_session("user-new", email, **metadata)
        self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_in_with_oauth(self, provider, redirect_url, query_params):
        self.calls.append(("sign_in_with_oauth", provider, redirect_url, dict(query_params)))
        if self.oauth_error is not None:
            raise self.oauth_error
        return f"https://accounts.example.com/o/oauth2/auth?provider={provider}"

    async def complete_redirect(self, query_params):
        self.calls.append(("complete_redirect", dict(query_params)))
        if "code" not in query_params or self.redirect_session is None:
            return None
        self.session = self.redirect_session
        self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_out(self, scope: SignOutScope):
        self.calls.append(("sign_out", scope))
        if scope in self.failing_sign_out_scopes:
            raise ProviderError(f"sign-out {scope.value} failed")
        self.session = None
        self.emit(AuthEvent.SIGNED_OUT, None)


class FakeProfileStore:
    """
    Profile rows keyed by id. ``gate`` (an asyncio.Event) holds lookups until
    the test releases it.
    """

    def __init__(self, rows: Optional[Dict[str, Dict[str, Any]]] = None):
        self.rows: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (rows or {}).items()}
        self.calls: List[Any] = []
        self.lookup_error: Optional[Exception] = None
        # Number of upcoming lookups that fail with ProfileStoreError
        self.failing_lookups = 0
        self.insert_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def get_by_id(self, user_id):
        self.calls.append(("get_by_id", user_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.failing_lookups > 0:
            self.failing_lookups -= 1
            raise ProfileStoreError("profiles unavailable")
        if self.lookup_error is not None:
            raise self.lookup_error
        row = self.rows.get(user_id)
        return dict(row) if row else None

    async def insert(self, row):
        self.calls.append(("insert", dict(row)))
        if self.insert_error is not None:
            raise self.insert_error
        self.rows[row["id"]] = dict(row)
        return dict(row)

    async def update(self, user_id, patch):
        self.calls.append(("update", user_id, dict(patch)))
        if self.update_error is not None:
            raise self.update_error
        self.rows.setdefault(user_id, {"id": user_id}).update(patch)


class FakeEventJoiner:
    def __init__(self, events: Optional[Dict[str, str]] = None):
        self.events = events or {"482913": "Spring Expo"}
        self.calls: List[Any] = []
        self.error: Optional[Exception] = None

    async def join(self, code, identity):
        self.calls.append((code, identity.id))
        if self.error is not None:
            raise self.error
        if code not in self.events:
            return JoinResult(success=False, message="Invalid access code")
        return JoinResult(success=True, event_name=self.events[code])


class FakeWallClock:
    """Timezone-aware wall clock for intent timestamps."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock plus a no-wait sleep that advances it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))
        # Let pending resolution tasks run between ticks
        await asyncio.sleep(0)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    """Settings pinned to the documented defaults regardless of the environment."""
    return replace(
        get_settings(),
        storage_key_prefix="pending.",
        provider_auth_prefix="firebase:authUser:",
        durable_scope_namespace="session_bootstrap",
        browsing_context_id="test",
        pending_intent_ttl_seconds=600,
        poll_max_attempts=50,
        poll_deadline_seconds=10.0,
        poll_base_delay_ms=100,
        poll_delay_step_ms=10,
        poll_max_delay_ms=500,
        admin_home_path="/admin",
        attendee_home_path="/attendee",
        login_path="/login",
        resume_purchase_prefix="/buy-tickets/",
        oauth_redirect_url="http://localhost:8090/auth/callback",
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def mono_clock():
    return FakeMonotonic()


@pytest.fixture
def short_lived():
    from session_bootstrap.storage import MemoryScope
    return MemoryScope()


@pytest.fixture
def durable(fake_redis):
    from session_bootstrap.storage import RedisScope
    return RedisScope(fake_redis, namespace="session_bootstrap", context_id="test")


@pytest.fixture
def intents(short_lived, durable, settings, wall_clock):
    from session_bootstrap.pending_intent import PendingIntentStore
    return PendingIntentStore(short_lived, durable, settings=settings, clock=wall_clock)


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def profile_store():
    return FakeProfileStore()


@pytest.fixture
def event_joiner():
    return FakeEventJoiner()


@pytest.fixture
def resolver(profile_store, intents):
    from session_bootstrap.profile_resolver import ProfileResolver
    return ProfileResolver(profile_store, intents)


@pytest.fixture
def manager(provider, resolver, intents, settings, mono_clock):
    from session_bootstrap.session_manager import SessionLifecycleManager
    mgr = SessionLifecycleManager(
        provider, resolver, intents, settings=settings, clock=mono_clock, sleep=mono_clock.sleep
    )
    yield mgr
    mgr.close()


@pytest.fixture
def bootstrap(settings, provider, profile_store, event_joiner, short_lived, durable, wall_clock, mono_clock):
    """Full pipeline on fakes, poller on the fake monotonic clock."""
    from session_bootstrap.runtime import build_session_bootstrap
    built = build_session_bootstrap(
        settings=settings,
        identity_provider=provider,
        profile_store=profile_store,
        event_joiner=event_joiner,
        short_lived=short_lived,
        durable=durable,
        intent_clock=wall_clock,
        poll_clock=mono_clock,
        poll_sleep=mono_clock.sleep,
    )
    yield built
    built.manager.close()
