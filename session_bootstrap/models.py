"""
Value objects shared by the session bootstrap components.

All of them are frozen dataclasses: the lifecycle manager publishes new
instances instead of mutating the ones subscribers already hold.
"""

import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import InvalidIntentError

EVENT_CODE_RE = re.compile(r"^\d{6}$")


class Role(str, Enum):
    HOST = "host"
    ATTENDEE = "attendee"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Lenient parse for values read back from storage or metadata."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"


class AuthEvent(str, Enum):
    """Transitions pushed by the identity provider."""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class SignOutScope(str, Enum):
    LOCAL = "local"
    GLOBAL = "global"


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        for key in ("name", "full_name", "display_name", "displayName"):
            value = self.metadata.get(key)
            if value:
                return str(value)
        if self.email:
            return self.email.split("@", 1)[0]
        return ""

    @property
    def avatar_url(self) -> Optional[str]:
        for key in ("avatar_url", "picture", "photo_url", "photoUrl"):
            value = self.metadata.get(key)
            if value:
                return str(value)
        return None


@dataclass(frozen=True)
class Session:
    """Provider-issued session. Owned by the provider, observed here."""
    user_id: str
    access_token: str = field(repr=False)
    user: Optional[UserRecord] = None
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[float] = None


@dataclass(frozen=True)
class ResolvedIdentity:
    id: str
    display_name: str
    email: Optional[str]
    role: Role
    profile_complete: bool
    avatar_url: Optional[str] = None
    current_event_id: Optional[str] = None
    # False when the synthesized profile row could not be inserted
    persisted: bool = True

    @classmethod
    def from_profile_row(
        cls,
        row: Dict[str, Any],
        user: Optional[UserRecord] = None,
        role: Optional[Role] = None,
        persisted: bool = True,
    ) -> "ResolvedIdentity":
        resolved_role = role or Role.parse(row.get("role")) or Role.ATTENDEE
        name = row.get("name") or (user.display_name if user else "")
        return cls(
            id=str(row["id"]),
            display_name=name or "",
            email=row.get("email") or (user.email if user else None),
            role=resolved_role,
            profile_complete=bool(row.get("name")) and Role.parse(row.get("role")) is not None,
            avatar_url=row.get("photo_url") or (user.avatar_url if user else None),
            current_event_id=row.get("current_event_id"),
            persisted=persisted,
        )

    def with_patch(self, **changes: Any) -> "ResolvedIdentity":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        return data


class IntentKind(str, Enum):
    JOIN_EVENT = "join_event"
    RESUME_PURCHASE = "resume_purchase"


class IntentSource(str, Enum):
    """Where a pending intent was read from, in precedence order."""
    SHORT_LIVED = "short_lived"
    DURABLE = "durable"
    COMPANION_PAYLOAD = "companion_payload"
    QUERY_PARAMS = "query_params"


@dataclass(frozen=True)
class PendingIntent:
    kind: IntentKind
    source: IntentSource
    code: Optional[str] = None
    path: Optional[str] = None
    captured_at: Optional[datetime] = None

    @classmethod
    def join_event(
        cls,
        code: str,
        source: IntentSource,
        captured_at: Optional[datetime] = None,
    ) -> "PendingIntent":
        code = (code or "").strip()
        if not EVENT_CODE_RE.match(code):
            raise InvalidIntentError(f"Event code must be 6 digits, got {code!r}")
        return cls(kind=IntentKind.JOIN_EVENT, source=source, code=code, captured_at=captured_at)

    @classmethod
    def resume_purchase(
        cls,
        path: str,
        source: IntentSource = IntentSource.DURABLE,
        captured_at: Optional[datetime] = None,
    ) -> "PendingIntent":
        path = (path or "").strip()
        if not path.startswith("/") or path.startswith("//"):
            raise InvalidIntentError(f"Resume path must be an absolute path, got {path!r}")
        return cls(kind=IntentKind.RESUME_PURCHASE, source=source, path=path, captured_at=captured_at)

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        if self.captured_at is None:
            return False
        return now - self.captured_at > ttl


@dataclass(frozen=True)
class PollAttempt:
    attempt_number: int
    elapsed_ms: float


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    # Resolved by querying the collaborators directly once the poll bound ran out
    FALLBACK = "fallback"
    NO_SESSION = "no_session"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ResolutionOutcome:
    kind: OutcomeKind
    identity: Optional[ResolvedIdentity] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.kind in (OutcomeKind.RESOLVED, OutcomeKind.FALLBACK)


@dataclass(frozen=True)
class AuthState:
    """Snapshot published to subscribers of the lifecycle manager."""
    status: AuthStatus
    identity: Optional[ResolvedIdentity] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "identity": self.identity.to_dict() if self.identity else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class JoinResult:
    success: bool
    event_name: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class RouteDecision:
    """The single navigation target computed after a bootstrap."""
    path: str
    authenticated: bool
    joined: Optional[bool] = None
    error: Optional[str] = None
    notice: Optional[str] = None

    @property
    def location(self) -> str:
        """URL to navigate to."""
        if not self.authenticated:
            return f"{self.path}?error={self.error}" if self.error else self.path
        if self.joined is None:
            return self.path
        sep = "&" if "?" in self.path else "?"
        return f"{self.path}{sep}joined={'true' if self.joined else 'false'}"

    @property
    def target(self) -> str:
        """``unauthenticated`` or ``route:<location>``."""
        if not self.authenticated:
            return "unauthenticated"
        return f"route:{self.location}"
