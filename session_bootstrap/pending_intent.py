"""
Pending Intent Store - deferred user actions across authentication redirects.
===========================================================================

A pending intent ("join event 482913", "resume ticket purchase
/buy-tickets/expo42") is captured before authentication and replayed once the
identity has resolved.

Layout (keys carry the subsystem prefix, ``pending.`` by default):

    pending.eventCode           short-lived & durable   6-digit code
    pending.role                durable                 host | attendee
    pending.eventPayload        durable                 {"code", "timestamp"}
    pending.resumePurchasePath  durable                 absolute path

Read precedence for a join intent:
    short-lived -> durable -> companion payload -> query parameters

A resume-purchase path outranks any join intent. Whatever is read, consuming
erases every location so the intent cannot re-trigger on a later navigation.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Mapping, Optional, Tuple

from .config import Settings, get_settings
from .exceptions import InvalidIntentError, StorageError
from .models import IntentSource, PendingIntent, Role
from .storage import QueryParamScope

logger = logging.getLogger("session_bootstrap.intents")

# =============================================================================
# CONSTANTS
# =============================================================================

EVENT_CODE_KEY = "eventCode"
ROLE_KEY = "role"
EVENT_PAYLOAD_KEY = "eventPayload"
RESUME_PATH_KEY = "resumePurchasePath"

# Mirrored on the outbound OAuth request and read back on return
QUERY_EVENT_CODE = "eventCode"
QUERY_ROLE = "role"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# PENDING INTENT STORE
# =============================================================================

class PendingIntentStore:
    """
    Write-once, read-once ledger of the user's pre-authentication intent.

    Writes go to both the short-lived and the durable scope; the durable copy
    expires after the intent TTL. ``consume()`` is meant to be called exactly
    once per resolved identity, by the redirect router.
    """

    def __init__(
        self,
        short_lived,
        durable,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        query_params: Optional[Mapping[str, str]] = None,
    ):
        self.settings = settings or get_settings()
        self.short_lived = short_lived
        self.durable = durable
        self.query = QueryParamScope(query_params)
        self.prefix = self.settings.storage_key_prefix
        self.ttl = timedelta(seconds=self.settings.pending_intent_ttl_seconds)
        self._clock = clock or _utcnow

        # Ranked join-intent readers; the first non-empty, non-stale hit wins.
        self._join_sources: List[Tuple[IntentSource, Callable[[], Optional[PendingIntent]]]] = [
            (IntentSource.SHORT_LIVED, self._read_short_lived),
            (IntentSource.DURABLE, self._read_durable),
            (IntentSource.COMPANION_PAYLOAD, self._read_companion_payload),
            (IntentSource.QUERY_PARAMS, self._read_query_params),
        ]

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def bind_query_params(self, params: Optional[Mapping[str, str]]) -> None:
        """Attach the current page's query parameters as the last-resort source."""
        self.query = QueryParamScope(params)

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    def capture_join_event(self, code: str) -> PendingIntent:
        """
        Record a join-event intent in both scopes plus the companion payload.

        Raises:
            InvalidIntentError: If the code is not a 6-digit string
            StorageError: If the durable scope write failed; the short-lived
                copy is kept
        """
        now = self._clock()
        intent = PendingIntent.join_event(code, IntentSource.SHORT_LIVED, captured_at=now)
        ttl_seconds = int(self.ttl.total_seconds())

        self.short_lived.set(self.key(EVENT_CODE_KEY), intent.code)
        self.durable.set(self.key(EVENT_CODE_KEY), intent.code, ttl_seconds)
        payload = {"code": intent.code, "timestamp": int(now.timestamp() * 1000)}
        self.durable.set(self.key(EVENT_PAYLOAD_KEY), json.dumps(payload), ttl_seconds)

        logger.info(f"[INTENT] Captured join_event code={intent.code}")
        return intent

    def capture_resume_purchase(self, path: str) -> PendingIntent:
        """
        Record a resume-purchase path in the durable scope.

        Raises:
            InvalidIntentError: If the path is not under the resume prefix
            StorageError: If the durable scope write failed
        """
        intent = PendingIntent.resume_purchase(path, captured_at=self._clock())
        if not self._is_resumable(intent.path):
            raise InvalidIntentError(
                f"Resume path must start with {self.settings.resume_purchase_prefix!r}"
            )
        self.durable.set(self.key(RESUME_PATH_KEY), intent.path, int(self.ttl.total_seconds()))
        logger.info(f"[INTENT] Captured resume_purchase path={intent.path}")
        return intent

    # =========================================================================
    # PENDING ROLE SLOT
    # =========================================================================

    def set_pending_role(self, role: Role) -> None:
        role = Role(role)
        try:
            self.durable.set(self.key(ROLE_KEY), role.value, int(self.ttl.total_seconds()))
        except StorageError as e:
            # Sign-up metadata and the OAuth redirect still carry the role
            logger.warning(f"[INTENT] Pending role not stored role={role.value}: {e}")
            return
        logger.info(f"[INTENT] Pending role set role={role.value}")

    def peek_pending_role(self) -> Optional[Role]:
        """Role chosen before authentication: durable slot, then the redirect's ``role`` param."""
        role = Role.parse(self.durable.get(self.key(ROLE_KEY)))
        if role is None:
            role = Role.parse(self.query.get(QUERY_ROLE))
        return role

    def clear_pending_role(self) -> None:
        self.durable.remove(self.key(ROLE_KEY))
        self.query.remove(QUERY_ROLE)

    def pop_pending_role(self) -> Optional[Role]:
        role = self.peek_pending_role()
        self.clear_pending_role()
        return role

    # =========================================================================
    # READ / CONSUME
    # =========================================================================

    def peek(self) -> Optional[PendingIntent]:
        """Active intent without consuming it. Resume-purchase outranks join."""
        resume = self.read_resume_purchase()
        if resume is not None:
            return resume
        return self.read_join_event()

    def read_resume_purchase(self) -> Optional[PendingIntent]:
        raw = self.durable.get(self.key(RESUME_PATH_KEY))
        if not raw:
            return None
        try:
            intent = PendingIntent.resume_purchase(raw, IntentSource.DURABLE)
        except InvalidIntentError:
            logger.warning(f"[INTENT] Ignoring malformed resume path={raw!r}")
            return None
        if not self._is_resumable(intent.path):
            logger.warning(f"[INTENT] Ignoring resume path outside prefix path={raw!r}")
            return None
        return intent

    def read_join_event(self) -> Optional[PendingIntent]:
        now = self._clock()
        for source, reader in self._join_sources:
            intent = reader()
            if intent is None:
                continue
            if intent.is_stale(now, self.ttl):
                logger.info(
                    f"[INTENT] Discarding stale intent source={source.value} "
                    f"captured_at={intent.captured_at.isoformat()}"
                )
                continue
            return intent
        return None

    def consume(self) -> Optional[PendingIntent]:
        """
        Read the active intent and erase every location, hit or not.

        Returns:
            The winning intent, or None if nothing usable was stored
        """
        intent = self.peek()
        self.clear_all()
        if intent is not None:
            logger.info(
                f"[INTENT] Consumed kind={intent.kind.value} source={intent.source.value}"
            )
        return intent

    def clear_all(self) -> None:
        """Erase the intent from all four read locations and the resume slot."""
        self.short_lived.remove(self.key(EVENT_CODE_KEY))
        self.durable.remove(self.key(EVENT_CODE_KEY))
        self.durable.remove(self.key(EVENT_PAYLOAD_KEY))
        self.durable.remove(self.key(RESUME_PATH_KEY))
        self.query.remove(QUERY_EVENT_CODE)

    def scrub(self, provider_prefix: str, include_intents: bool = False) -> int:
        """
        Erase cached identity artifacts from both scopes.

        Provider keys (``provider_prefix``) and the pending role always go.
        With ``include_intents`` every subsystem key goes too (sign-out);
        without it a join or resume intent captured before login survives.

        Returns:
            Number of keys removed
        """
        removed = 0
        for scope in (self.short_lived, self.durable):
            for key in list(scope.keys()):
                owned = include_intents and key.startswith(self.prefix)
                if key.startswith(provider_prefix) or owned or key == self.key(ROLE_KEY):
                    scope.remove(key)
                    removed += 1
        self.query.remove(QUERY_ROLE)
        if include_intents:
            self.clear_all()
        logger.info(f"[INTENT] Scrubbed keys={removed} include_intents={include_intents}")
        return removed

    # =========================================================================
    # SOURCE READERS
    # =========================================================================

    def _parse_code(self, raw: Optional[str], source: IntentSource) -> Optional[PendingIntent]:
        if not raw:
            return None
        try:
            return PendingIntent.join_event(raw, source)
        except InvalidIntentError:
            logger.warning(f"[INTENT] Ignoring malformed code source={source.value}")
            return None

    def _read_short_lived(self) -> Optional[PendingIntent]:
        return self._parse_code(self.short_lived.get(self.key(EVENT_CODE_KEY)), IntentSource.SHORT_LIVED)

    def _read_durable(self) -> Optional[PendingIntent]:
        return self._parse_code(self.durable.get(self.key(EVENT_CODE_KEY)), IntentSource.DURABLE)

    def _read_companion_payload(self) -> Optional[PendingIntent]:
        raw = self.durable.get(self.key(EVENT_PAYLOAD_KEY))
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            captured_at = datetime.fromtimestamp(int(payload["timestamp"]) / 1000, tz=timezone.utc)
            return PendingIntent.join_event(
                str(payload["code"]), IntentSource.COMPANION_PAYLOAD, captured_at=captured_at
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[INTENT] Ignoring malformed companion payload: {e}")
            return None

    def _read_query_params(self) -> Optional[PendingIntent]:
        return self._parse_code(self.query.get(QUERY_EVENT_CODE), IntentSource.QUERY_PARAMS)

    def _is_resumable(self, path: Optional[str]) -> bool:
        return bool(path) and path.startswith(self.settings.resume_purchase_prefix)
