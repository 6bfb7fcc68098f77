"""
ResolutionPoller tests. Everything runs on the fake monotonic clock; no test
actually waits.
"""

from types import SimpleNamespace

import pytest

from conftest import make_session
from session_bootstrap.exceptions import ProfileStoreError, ProviderError
from session_bootstrap.models import AuthState, AuthStatus, OutcomeKind, ResolvedIdentity, Role
from session_bootstrap.poller import PollPolicy, ResolutionPoller


def _identity(uid="user-1", role=Role.ATTENDEE):
    return ResolvedIdentity(
        id=uid, display_name="Ana", email="ana@example.com", role=role, profile_complete=True
    )


@pytest.fixture
def fake_manager():
    return SimpleNamespace(state=AuthState(status=AuthStatus.LOADING))


@pytest.fixture
def make_poller(fake_manager, resolver, provider, mono_clock):
    def _make(policy=None):
        return ResolutionPoller(
            fake_manager, resolver, provider, policy=policy or PollPolicy(),
            clock=mono_clock, sleep=mono_clock.sleep,
        )
    return _make


class TestPollPolicy:
    def test_delay_ramp_is_linear_then_capped(self):
        policy = PollPolicy()
        assert policy.delay_ms(0) == 100
        assert policy.delay_ms(1) == 110
        assert policy.delay_ms(10) == 200
        assert policy.delay_ms(40) == 500
        assert policy.delay_ms(49) == 500

    def test_from_settings(self, settings):
        policy = PollPolicy.from_settings(settings)
        assert policy.max_attempts == 50
        assert policy.deadline_seconds == 10.0


class TestWithinBound:
    async def test_already_resolved_returns_without_sleeping(self, make_poller, fake_manager, mono_clock, provider):
        fake_manager.state = AuthState(status=AuthStatus.AUTHENTICATED, identity=_identity())

        outcome = await make_poller().wait_for_identity()

        assert outcome.kind == OutcomeKind.RESOLVED
        assert outcome.attempts == 0
        assert mono_clock.sleeps == []
        assert provider.calls == []

    async def test_resolves_after_a_few_ticks_without_fallback(
        self, make_poller, fake_manager, mono_clock, provider
    ):
        def _resolve_on_third(tick):
            if tick == 3:
                fake_manager.state = AuthState(status=AuthStatus.AUTHENTICATED, identity=_identity())

        mono_clock.on_sleep = _resolve_on_third

        outcome = await make_poller().wait_for_identity()

        assert outcome.kind == OutcomeKind.RESOLVED
        assert outcome.attempts == 3
        assert mono_clock.sleeps == [pytest.approx(0.11), pytest.approx(0.12), pytest.approx(0.13)]
        assert "get_session" not in provider.calls

    async def test_no_session_is_terminal(self, make_poller, fake_manager, provider, mono_clock):
        fake_manager.state = AuthState(status=AuthStatus.UNAUTHENTICATED)

        outcome = await make_poller().wait_for_identity()

        assert outcome.kind == OutcomeKind.NO_SESSION
        assert outcome.identity is None
        assert mono_clock.sleeps == []
        assert provider.calls == []

    async def test_unauthenticated_with_error_is_error(self, make_poller, fake_manager):
        fake_manager.state = AuthState(status=AuthStatus.UNAUTHENTICATED, error="resolution_failed")

        outcome = await make_poller().wait_for_identity()

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.error == "resolution_failed"

    async def test_stop_cancels(self, make_poller, mono_clock):
        poller = make_poller()
        mono_clock.on_sleep = lambda tick: poller.stop() if tick == 2 else None

        outcome = await poller.wait_for_identity()

        assert outcome.kind == OutcomeKind.CANCELLED
        assert outcome.attempts == 2


class TestBoundAndFallback:
    async def test_deadline_bounds_wall_clock_and_falls_back_once(
        self, make_poller, mono_clock, provider, profile_store
    ):
        provider.session = make_session("user-1")
        profile_store.rows["user-1"] = {"id": "user-1", "name": "Ana", "role": "attendee"}

        outcome = await make_poller().wait_for_identity()

        assert outcome.kind == OutcomeKind.FALLBACK
        assert outcome.identity.id == "user-1"
        assert provider.calls.count("get_session") == 1
        assert mono_clock.now <= 10.0 + 1e-6
        assert len(mono_clock.sleeps) < 50

    async def test_attempt_bound_reached_first(self, make_poller, mono_clock, provider):
        provider.session = make_session("user-1")
        policy = PollPolicy(max_attempts=5, deadline_seconds=60)

        outcome = await make_poller(policy).wait_for_identity()

        assert outcome.kind == OutcomeKind.FALLBACK
        assert outcome.attempts == 5
        assert len(mono_clock.sleeps) == 4
        assert provider.calls.count("get_session") == 1

    async def test_fallback_without_session(self, make_poller, provider):
        outcome = await make_poller(PollPolicy(max_attempts=2)).wait_for_identity()

        assert outcome.kind == OutcomeKind.NO_SESSION

    async def test_fallback_provider_error(self, make_poller, provider):
        provider.get_session_error = ProviderError("network down")

        outcome = await make_poller(PollPolicy(max_attempts=2)).wait_for_identity()

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.error == "auth_failed"

    async def test_fallback_profile_error(self, make_poller, provider, profile_store):
        provider.session = make_session("user-1")
        profile_store.lookup_error = ProfileStoreError("unavailable")

        outcome = await make_poller(PollPolicy(max_attempts=2)).wait_for_identity()

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.error == "profile_lookup_failed"
        assert outcome.is_authenticated is False
