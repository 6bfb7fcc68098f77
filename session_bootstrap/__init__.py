"""
Session bootstrap and pending-intent reconciliation.

Establishes an authenticated session after password login, registration or
an OAuth redirect, waits for the asynchronously created profile row, and
replays the action the user asked for before authenticating.
"""

from .callback_flow import AuthCallbackFlow
from .exceptions import (
    AuthenticationError,
    InvalidIntentError,
    JoinEventError,
    ProfileLookupError,
    ProfileStoreError,
    ProviderError,
    SessionBootstrapError,
    StorageError,
)
from .models import (
    AuthEvent,
    AuthState,
    AuthStatus,
    IntentKind,
    IntentSource,
    JoinResult,
    OutcomeKind,
    PendingIntent,
    ResolutionOutcome,
    ResolvedIdentity,
    Role,
    RouteDecision,
    Session,
    SignOutScope,
    UserRecord,
)
from .pending_intent import PendingIntentStore
from .poller import PollPolicy, ResolutionPoller
from .profile_resolver import ProfileResolver
from .redirect_router import RedirectRouter
from .runtime import SessionBootstrap, build_session_bootstrap
from .session_manager import SessionLifecycleManager
from .storage import MemoryScope, QueryParamScope, RedisScope

__version__ = "0.1.0"

__all__ = [
    "AuthCallbackFlow",
    "AuthEvent",
    "AuthState",
    "AuthStatus",
    "AuthenticationError",
    "IntentKind",
    "IntentSource",
    "InvalidIntentError",
    "JoinEventError",
    "JoinResult",
    "MemoryScope",
    "OutcomeKind",
    "PendingIntent",
    "PendingIntentStore",
    "PollPolicy",
    "ProfileLookupError",
    "ProfileResolver",
    "ProfileStoreError",
    "ProviderError",
    "QueryParamScope",
    "RedirectRouter",
    "RedisScope",
    "ResolutionOutcome",
    "ResolutionPoller",
    "ResolvedIdentity",
    "Role",
    "RouteDecision",
    "Session",
    "SessionBootstrap",
    "SessionBootstrapError",
    "StorageError",
    "SessionLifecycleManager",
    "SignOutScope",
    "UserRecord",
    "build_session_bootstrap",
]
