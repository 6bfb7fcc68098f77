"""
Bounded polling for the redirect-completion flow.

Right after an OAuth redirect the lifecycle manager may not have caught up
with the new session yet. The poller re-checks the manager on a gentle linear
ramp until it reports an identity, reports "no session", or the bounds run out
(attempt count and wall-clock deadline, whichever first). After that it asks
the identity provider and profile store directly, exactly once.

Clock and sleep are injectable so the state machine runs on a fake clock.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .config import Settings
from .exceptions import ProfileStoreError, ProviderError
from .models import AuthStatus, OutcomeKind, PollAttempt, ResolutionOutcome
from .profile_resolver import ProfileResolver

logger = logging.getLogger("session_bootstrap.poller")


@dataclass(frozen=True)
class PollPolicy:
    max_attempts: int = 50
    deadline_seconds: float = 10.0
    base_delay_ms: int = 100
    step_ms: int = 10
    max_delay_ms: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollPolicy":
        return cls(
            max_attempts=settings.poll_max_attempts,
            deadline_seconds=settings.poll_deadline_seconds,
            base_delay_ms=settings.poll_base_delay_ms,
            step_ms=settings.poll_delay_step_ms,
            max_delay_ms=settings.poll_max_delay_ms,
        )

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms + attempt * self.step_ms, self.max_delay_ms)


class ResolutionPoller:
    def __init__(
        self,
        manager,
        resolver: ProfileResolver,
        identity_provider,
        policy: Optional[PollPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.manager = manager
        self.resolver = resolver
        self.identity_provider = identity_provider
        self.policy = policy or PollPolicy()
        self._clock = clock
        self._sleep = sleep
        self._stopped = False
        self.last_attempt: Optional[PollAttempt] = None

    def stop(self) -> None:
        """Stop issuing ticks. An in-flight provider call is left to finish."""
        self._stopped = True

    async def wait_for_identity(self) -> ResolutionOutcome:
        started = self._clock()
        attempt = 0

        while True:
            if self._stopped:
                return ResolutionOutcome(OutcomeKind.CANCELLED, attempts=attempt)

            state = self.manager.state
            if state.status == AuthStatus.AUTHENTICATED and state.identity is not None:
                logger.info("[POLLER] Resolved", extra={"uid": state.identity.id, "attempt": attempt})
                return ResolutionOutcome(OutcomeKind.RESOLVED, identity=state.identity, attempts=attempt)
            if state.status == AuthStatus.UNAUTHENTICATED:
                kind = OutcomeKind.ERROR if state.error else OutcomeKind.NO_SESSION
                logger.info(f"[POLLER] Terminal negative kind={kind.value} attempts={attempt}")
                return ResolutionOutcome(kind, attempts=attempt, error=state.error)

            attempt += 1
            elapsed = self._clock() - started
            self.last_attempt = PollAttempt(attempt_number=attempt, elapsed_ms=elapsed * 1000)
            if attempt >= self.policy.max_attempts or elapsed >= self.policy.deadline_seconds:
                break

            remaining = self.policy.deadline_seconds - elapsed
            delay = min(self.policy.delay_ms(attempt) / 1000, remaining)
            await self._sleep(delay)

        logger.warning(
            f"[POLLER] Bound reached attempts={attempt} "
            f"elapsed_ms={self.last_attempt.elapsed_ms:.0f}, querying collaborators directly"
        )
        return await self._direct_fallback(attempt)

    async def _direct_fallback(self, attempts: int) -> ResolutionOutcome:
        try:
            session = await self.identity_provider.get_session()
        except ProviderError as e:
            logger.error(f"[POLLER] Fallback session query failed: {e}")
            return ResolutionOutcome(OutcomeKind.ERROR, attempts=attempts, error="auth_failed")

        if session is None:
            return ResolutionOutcome(OutcomeKind.NO_SESSION, attempts=attempts)

        try:
            identity = await self.resolver.resolve(session)
        except ProfileStoreError as e:
            logger.error(f"[POLLER] Fallback profile lookup failed uid={session.user_id}: {e}")
            return ResolutionOutcome(OutcomeKind.ERROR, attempts=attempts, error="profile_lookup_failed")

        logger.info(
            f"[POLLER] Fallback resolved persisted={identity.persisted}",
            extra={"uid": identity.id, "attempt": attempts, "source": "fallback"},
        )
        return ResolutionOutcome(OutcomeKind.FALLBACK, identity=identity, attempts=attempts)
