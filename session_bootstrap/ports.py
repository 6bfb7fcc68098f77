"""
Collaborator interfaces consumed by the session bootstrap.

The identity provider and the profile store live outside this package;
the storage scopes and the join action handler are pluggable as well.
Concrete adapters live in ``session_bootstrap.providers`` and
``session_bootstrap.storage``.
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol

from .models import AuthEvent, JoinResult, ResolvedIdentity, Session, SignOutScope, UserRecord

AuthStateCallback = Callable[[AuthEvent, Optional[Session]], None]
Unsubscribe = Callable[[], None]


class IdentityProvider(Protocol):
    """
    Issues and validates sessions.

    Every coroutine may raise ``ProviderError``. Callbacks registered with
    ``on_auth_state_change`` are invoked synchronously from inside the
    provider; they must not await provider calls.
    """

    async def get_session(self) -> Optional[Session]: ...

    async def get_user(self) -> Optional[UserRecord]: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[Session]: ...

    async def sign_in_with_oauth(
        self, provider: str, redirect_url: str, query_params: Dict[str, str]
    ) -> str: ...

    async def complete_redirect(self, query_params: Mapping[str, str]) -> Optional[Session]: ...

    async def sign_out(self, scope: SignOutScope) -> None: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Unsubscribe: ...


class ProfileStore(Protocol):
    """Profile rows keyed by the provider user id. Raises ``ProfileStoreError``."""

    async def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update(self, user_id: str, patch: Dict[str, Any]) -> None: ...


class StorageScope(Protocol):
    """String key/value scope (short-lived, durable or read-only)."""

    name: str

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> Iterable[str]: ...


class EventJoiner(Protocol):
    """Handler for the deferred join-event action."""

    async def join(self, code: str, identity: ResolvedIdentity) -> JoinResult: ...
