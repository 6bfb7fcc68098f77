"""
Redirect-completion flow.

Runs when the browser lands back on the OAuth callback (or right after a
password login / registration):

    1. let the provider pick up a session carried by the redirect
    2. confirm a session exists (none -> login?error=no_session)
    3. poll the lifecycle manager for the resolved identity (bounded)
    4. hand the outcome to the redirect router

Whatever goes wrong, the flow ends on a route; it never stays loading.
"""

import asyncio
import logging
from typing import Mapping, Optional

from .exceptions import ProviderError
from .models import RouteDecision
from .pending_intent import PendingIntentStore
from .poller import ResolutionPoller
from .redirect_router import RedirectRouter

logger = logging.getLogger("session_bootstrap.callback")


class AuthCallbackFlow:
    def __init__(
        self,
        identity_provider,
        intents: PendingIntentStore,
        poller: ResolutionPoller,
        router: RedirectRouter,
    ):
        self.identity_provider = identity_provider
        self.intents = intents
        self.poller = poller
        self.router = router

    async def complete(self, query_params: Optional[Mapping[str, str]] = None) -> RouteDecision:
        params = dict(query_params or {})
        self.intents.bind_query_params(params)
        try:
            return await self._complete(params)
        except Exception as e:
            logger.error(f"[CALLBACK] Unexpected error: {e}", exc_info=True)
            return self.router.unauthenticated("unexpected")

    async def _complete(self, params: Mapping[str, str]) -> RouteDecision:
        try:
            session = await self.identity_provider.complete_redirect(params)
            if session is None:
                session = await self.identity_provider.get_session()
        except ProviderError as e:
            logger.error(f"[CALLBACK] Session error: {e}")
            return self.router.unauthenticated("auth_failed")

        if session is None:
            logger.info("[CALLBACK] No session after redirect")
            return self.router.unauthenticated("no_session")

        # Provider notifications reach the manager one loop iteration later
        await asyncio.sleep(0)
        outcome = await self.poller.wait_for_identity()
        decision = await self.router.route(outcome)
        logger.info(
            f"[CALLBACK] Completed outcome={outcome.kind.value}",
            extra={"uid": session.user_id, "route": decision.target},
        )
        return decision
