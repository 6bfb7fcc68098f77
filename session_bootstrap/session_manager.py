"""
Session Lifecycle Manager
=========================

Owns the process-wide authentication state and is its only writer.

States:
    UNAUTHENTICATED -> LOADING -> AUTHENTICATED
    AUTHENTICATED -> LOADING        provider pushed a different user
    any -> UNAUTHENTICATED          sign-out, session loss, resolution failure

Every write goes through ``_commit(epoch, ...)``. The epoch is bumped whenever
the session changes (new user, sign-out, teardown); a resolution that started
under an older epoch is dropped when it completes, so a slow profile fetch can
never resurrect an identity that sign-out already cleared.

Provider callbacks are deferred to the next loop iteration: the provider
forbids calling back into itself from inside its own notification.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .config import Settings, get_settings
from .exceptions import ProfileLookupError, ProviderError
from .models import (
    AuthEvent,
    AuthState,
    AuthStatus,
    ResolvedIdentity,
    Role,
    Session,
    SignOutScope,
)
from .pending_intent import PendingIntentStore
from .poller import PollPolicy
from .profile_resolver import ProfileResolver

logger = logging.getLogger("session_bootstrap.manager")

StateListener = Callable[[AuthState], None]

# Identity field -> profile column
_PROFILE_COLUMNS = {
    "display_name": "name",
    "avatar_url": "photo_url",
    "role": "role",
    "current_event_id": "current_event_id",
}


class SessionLifecycleManager:
    def __init__(
        self,
        identity_provider,
        resolver: ProfileResolver,
        intents: PendingIntentStore,
        settings: Optional[Settings] = None,
        retry_policy: Optional[PollPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.identity_provider = identity_provider
        self.resolver = resolver
        self.intents = intents
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or PollPolicy.from_settings(self.settings)
        self._clock = clock
        self._sleep = sleep

        # Nothing is known before initialize(): report LOADING, not a false negative
        self._state = AuthState(status=AuthStatus.LOADING)
        self._epoch = 0
        self._session_user_id: Optional[str] = None
        self._listeners: List[StateListener] = []
        self._provider_unsub: Optional[Callable[[], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._deferred: Set[asyncio.Handle] = set()
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_epoch: Optional[int] = None
        self._closed = False

    # =========================================================================
    # READ SIDE
    # =========================================================================

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def status(self) -> AuthStatus:
        return self._state.status

    @property
    def identity(self) -> Optional[ResolvedIdentity]:
        return self._state.identity

    @property
    def session_user_id(self) -> Optional[str]:
        return self._session_user_id

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener. Returns the matching unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # =========================================================================
    # MUTATION ENTRY POINT
    # =========================================================================

    def _begin(self, user_id: Optional[str]) -> int:
        self._epoch += 1
        self._session_user_id = user_id
        return self._epoch

    def _commit(
        self,
        epoch: int,
        status: AuthStatus,
        identity: Optional[ResolvedIdentity] = None,
        error: Optional[str] = None,
    ) -> bool:
        if epoch != self._epoch:
            logger.info(
                f"[SESSION] Dropping stale result epoch={epoch} current={self._epoch} "
                f"status={status.value}"
            )
            return False
        new_state = AuthState(status=status, identity=identity, error=error)
        if new_state == self._state:
            return True
        self._state = new_state
        logger.info(
            f"[SESSION] State changed error={error}",
            extra={"uid": identity.id if identity else self._session_user_id, "status": status.value},
        )
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"[SESSION] Listener error: {e}", exc_info=True)
        return True

    # =========================================================================
    # STARTUP / PROVIDER EVENTS
    # =========================================================================

    async def initialize(self) -> AuthState:
        """Subscribe to provider transitions and resolve any existing session."""
        self._loop = asyncio.get_running_loop()
        if self._provider_unsub is None:
            self._provider_unsub = self.identity_provider.on_auth_state_change(
                self._on_provider_state_change
            )

        try:
            session = await self.identity_provider.get_session()
        except ProviderError as e:
            logger.warning(f"[SESSION] Session query failed, treating as signed out: {e}")
            self._commit(self._begin(None), AuthStatus.UNAUTHENTICATED, error="session_query_failed")
            return self._state

        if session is None:
            self._commit(self._begin(None), AuthStatus.UNAUTHENTICATED)
            return self._state

        await self._ensure_resolution(session)
        return self._state

    def _on_provider_state_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        if self._closed or self._loop is None:
            return
        logger.info(f"[SESSION] Provider event={getattr(event, 'value', event)} "
                    f"uid={session.user_id if session else None}")
        handle: Optional[asyncio.Handle] = None

        def _run() -> None:
            self._deferred.discard(handle)
            self._handle_provider_event(event, session)

        handle = self._loop.call_soon_threadsafe(_run)
        self._deferred.add(handle)

    def _handle_provider_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        if self._closed:
            return

        if event == AuthEvent.SIGNED_OUT or session is None:
            if self._session_user_id is None and self.status == AuthStatus.UNAUTHENTICATED:
                return
            self._commit(self._begin(None), AuthStatus.UNAUTHENTICATED)
            return

        current = self.identity
        if current is not None and current.id == session.user_id:
            # Token refresh or metadata update for the same user
            return
        self._ensure_resolution(session)

    def _ensure_resolution(self, session: Session) -> asyncio.Task:
        """Start (or join) the resolution for ``session`` under a fresh epoch."""
        task = self._inflight
        if (
            task is not None
            and self._inflight_epoch == self._epoch
            and self._session_user_id == session.user_id
            and (not task.done() or self.identity is not None)
        ):
            return task

        epoch = self._begin(session.user_id)
        self._commit(epoch, AuthStatus.LOADING)
        task = asyncio.ensure_future(self._resolve(epoch, session))
        self._inflight = task
        self._inflight_epoch = epoch
        return task

    async def _resolve(self, epoch: int, session: Session) -> Optional[ResolvedIdentity]:
        """
        Resolve the profile for ``session``, retrying transient lookup failures
        on the poll ramp until the attempt or deadline bound runs out.
        """
        policy = self.retry_policy
        started = self._clock()
        attempt = 0

        while True:
            try:
                identity = await self.resolver.resolve(session)
                break
            except ProfileLookupError as e:
                attempt += 1
                elapsed = self._clock() - started
                if attempt >= policy.max_attempts or elapsed >= policy.deadline_seconds:
                    logger.error(
                        f"[SESSION] Profile lookup gave up: {e}",
                        extra={"uid": session.user_id, "attempt": attempt},
                    )
                    self._commit(epoch, AuthStatus.UNAUTHENTICATED, error="profile_lookup_failed")
                    return None
                logger.warning(
                    f"[SESSION] Profile lookup failed, retrying: {e}",
                    extra={"uid": session.user_id, "attempt": attempt},
                )
                if not self._commit(epoch, AuthStatus.LOADING, error="profile_lookup_failed"):
                    return None
                await self._sleep(min(policy.delay_ms(attempt) / 1000, policy.deadline_seconds - elapsed))
                if epoch != self._epoch:
                    return None
            except Exception as e:
                logger.error(f"[SESSION] Resolution failed uid={session.user_id}: {e}", exc_info=True)
                self._commit(epoch, AuthStatus.UNAUTHENTICATED, error="resolution_failed")
                return None

        if self._commit(epoch, AuthStatus.AUTHENTICATED, identity):
            return identity
        return None

    # =========================================================================
    # IMPERATIVE OPERATIONS
    # =========================================================================

    async def login(self, email: str, password: str) -> AuthState:
        """
        Password sign-in.

        Raises:
            AuthenticationError: If the provider refuses the credentials
            ProviderError: On transport failure
        """
        self.intents.scrub(self.settings.provider_auth_prefix)
        session = await self.identity_provider.sign_in_with_password(email, password)
        logger.info(f"[SESSION] Password sign-in uid={session.user_id}")
        await self._ensure_resolution(session)
        return self._state

    async def register(self, display_name: str, email: str, password: str, role: Role) -> AuthState:
        """
        Create an account with the chosen role.

        The role is parked in the pending-role slot and the new user is marked
        as just registered, so the resolver may correct a default role written
        by the profile trigger. Both are erased once used or when this call
        returns, whichever comes first.
        """
        role = Role(role)
        self.intents.scrub(self.settings.provider_auth_prefix)
        self.intents.set_pending_role(role)
        registered: Optional[str] = None
        try:
            session = await self.identity_provider.sign_up(
                email, password, {"name": display_name, "role": role.value}
            )
            if session is None:
                logger.info(f"[SESSION] Sign-up pending confirmation email={email}")
                return self._state
            logger.info(f"[SESSION] Registered uid={session.user_id} role={role.value}")
            registered = session.user_id
            self.resolver.expect_new_profile(registered)
            await self._ensure_resolution(session)
            return self._state
        finally:
            self.intents.clear_pending_role()
            if registered is not None:
                self.resolver.forget_new_profile(registered)

    async def sign_in_with_provider(self, role: Role, provider: str = "google") -> str:
        """
        Start an OAuth sign-in. Returns the provider URL to navigate to.

        The chosen role and any pending join code ride along in the redirect's
        query parameters; the role is also kept in the durable pending-role slot.
        """
        role = Role(role)
        self.intents.scrub(self.settings.provider_auth_prefix)
        self.intents.set_pending_role(role)

        query_params: Dict[str, str] = {
            "access_type": "offline",
            "prompt": "consent",
            "role": role.value,
        }
        pending = self.intents.read_join_event()
        if pending is not None:
            query_params["eventCode"] = pending.code

        try:
            url = await self.identity_provider.sign_in_with_oauth(
                provider, self.settings.oauth_redirect_url, query_params
            )
        except ProviderError:
            self.intents.clear_pending_role()
            raise
        logger.info(f"[SESSION] OAuth started provider={provider} role={role.value}")
        return url

    async def sign_out(self) -> bool:
        """
        Clear the identity, scrub local artifacts, then revoke the session.

        Returns:
            True if the provider acknowledged the sign-out (global or local)
        """
        previous = self._session_user_id
        self._commit(self._begin(None), AuthStatus.UNAUTHENTICATED)
        self.intents.scrub(self.settings.provider_auth_prefix, include_intents=True)

        try:
            await self.identity_provider.sign_out(SignOutScope.GLOBAL)
            logger.info(f"[SESSION] Signed out uid={previous} scope=global")
            return True
        except ProviderError as e:
            logger.warning(f"[SESSION] Global sign-out failed uid={previous}: {e}")

        try:
            await self.identity_provider.sign_out(SignOutScope.LOCAL)
            logger.info(f"[SESSION] Signed out uid={previous} scope=local")
            return True
        except ProviderError as e:
            logger.error(f"[SESSION] Local sign-out failed uid={previous}: {e}")
            return False

    async def update_identity(self, patch: Dict[str, Any]) -> Optional[ResolvedIdentity]:
        """
        Write identity fields through to the profile store and republish.

        Raises:
            ValueError: On a field that is not part of the profile
            ProfileStoreError: If the store write fails (identity unchanged)
        """
        identity = self.identity
        if identity is None:
            return None
        unknown = set(patch) - set(_PROFILE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported identity fields: {sorted(unknown)}")

        changes = dict(patch)
        if "role" in changes:
            changes["role"] = Role(changes["role"])
        columns = {
            _PROFILE_COLUMNS[k]: (v.value if isinstance(v, Role) else v)
            for k, v in changes.items()
        }

        epoch = self._epoch
        await self.resolver.profile_store.update(identity.id, columns)
        updated = identity.with_patch(**changes)
        if not self._commit(epoch, AuthStatus.AUTHENTICATED, updated):
            return None
        return updated

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def close(self) -> None:
        """Stop reacting to the provider. In-flight calls finish but are dropped."""
        self._closed = True
        if self._provider_unsub is not None:
            self._provider_unsub()
            self._provider_unsub = None
        for handle in self._deferred:
            handle.cancel()
        self._deferred.clear()
        self._epoch += 1
        self._listeners.clear()
