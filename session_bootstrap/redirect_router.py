"""
Redirect Router - one navigation target per bootstrap.

Precedence (highest first):
    1. resume-purchase path from the durable scope, any role
    2. join-event intent, attendees only (a host's leftover join is dropped)
    3. role home: host -> admin home, attendee -> attendee home

A negative resolution routes to the login entry point and leaves the intent
untouched so the user can retry.
"""

import logging
from typing import Optional

from .config import Settings, get_settings
from .models import (
    IntentKind,
    OutcomeKind,
    ResolutionOutcome,
    ResolvedIdentity,
    Role,
    RouteDecision,
)
from .pending_intent import PendingIntentStore

logger = logging.getLogger("session_bootstrap.router")

JOIN_FAILED_NOTICE = (
    "Your account is ready, but we couldn't join the event. "
    "Please scan the QR code again."
)


class RedirectRouter:
    def __init__(self, intents: PendingIntentStore, event_joiner, settings: Optional[Settings] = None):
        self.intents = intents
        self.event_joiner = event_joiner
        self.settings = settings or get_settings()

    def home_for(self, role: Role) -> str:
        if role == Role.HOST:
            return self.settings.admin_home_path
        return self.settings.attendee_home_path

    def unauthenticated(self, error: Optional[str] = None) -> RouteDecision:
        return RouteDecision(path=self.settings.login_path, authenticated=False, error=error)

    async def route(self, outcome: ResolutionOutcome) -> RouteDecision:
        if not outcome.is_authenticated:
            error = outcome.error
            if error is None and outcome.kind != OutcomeKind.NO_SESSION:
                error = outcome.kind.value
            logger.info(f"[ROUTER] Unauthenticated kind={outcome.kind.value} error={error}")
            return self.unauthenticated(error)

        identity = outcome.identity
        intent = self.intents.consume()

        if intent is not None and intent.kind == IntentKind.RESUME_PURCHASE:
            logger.info("[ROUTER] Resume purchase", extra={"uid": identity.id, "route": intent.path})
            return RouteDecision(path=intent.path, authenticated=True)

        if intent is not None and intent.kind == IntentKind.JOIN_EVENT:
            if identity.role == Role.ATTENDEE:
                return await self._join(identity, intent.code)
            logger.info(f"[ROUTER] Dropping join intent for host uid={identity.id}")

        path = self.home_for(identity.role)
        logger.info(
            f"[ROUTER] Default route role={identity.role.value}", extra={"uid": identity.id, "route": path}
        )
        return RouteDecision(path=path, authenticated=True)

    async def _join(self, identity: ResolvedIdentity, code: str) -> RouteDecision:
        home = self.home_for(identity.role)
        try:
            result = await self.event_joiner.join(code, identity)
        except Exception as e:
            # The identity is already resolved; a failed join is recoverable by the user
            logger.error(f"[ROUTER] Join failed uid={identity.id} code={code}: {e}", exc_info=True)
            return RouteDecision(path=home, authenticated=True, joined=False, notice=JOIN_FAILED_NOTICE)

        if not result.success:
            logger.warning(
                f"[ROUTER] Join refused uid={identity.id} code={code} message={result.message}"
            )
            return RouteDecision(path=home, authenticated=True, joined=False, notice=JOIN_FAILED_NOTICE)

        logger.info(f"[ROUTER] Joined uid={identity.id} code={code} event={result.event_name}")
        notice = f"Welcome to {result.event_name}" if result.event_name else None
        return RouteDecision(path=home, authenticated=True, joined=True, notice=notice)
