"""
Component wiring.

``build_session_bootstrap`` assembles the pipeline

    lifecycle manager -> poller -> pending intents -> redirect router

around the given collaborators, defaulting to the Firebase/Firestore/Redis
adapters. ``session_bootstrap.main`` keeps the instance it started in ``bootstrap``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .callback_flow import AuthCallbackFlow
from .config import Settings, get_settings
from .pending_intent import PendingIntentStore
from .poller import PollPolicy, ResolutionPoller
from .profile_resolver import ProfileResolver
from .redirect_router import RedirectRouter
from .session_manager import SessionLifecycleManager
from .storage import MemoryScope, RedisScope


@dataclass
class SessionBootstrap:
    settings: Settings
    identity_provider: object
    profile_store: object
    intents: PendingIntentStore
    resolver: ProfileResolver
    manager: SessionLifecycleManager
    poller: ResolutionPoller
    router: RedirectRouter
    callback_flow: AuthCallbackFlow


def build_session_bootstrap(
    settings: Optional[Settings] = None,
    identity_provider=None,
    profile_store=None,
    event_joiner=None,
    short_lived=None,
    durable=None,
    intent_clock=None,
    poll_clock=None,
    poll_sleep=None,
) -> SessionBootstrap:
    settings = settings or get_settings()
    short_lived = short_lived if short_lived is not None else MemoryScope()
    if durable is None:
        durable = RedisScope(
            namespace=settings.durable_scope_namespace,
            context_id=settings.browsing_context_id,
        )

    if identity_provider is None:
        from .providers import FirebaseIdentityProvider
        identity_provider = FirebaseIdentityProvider(
            api_key=settings.firebase_api_key,
            storage=durable,
            auth_prefix=settings.provider_auth_prefix,
        )
    if profile_store is None:
        from .providers import FirestoreProfileStore
        profile_store = FirestoreProfileStore(collection=settings.profiles_collection)
    if event_joiner is None:
        from .providers import FirestoreEventJoiner
        event_joiner = FirestoreEventJoiner(
            events_collection=settings.events_collection,
            profiles_collection=settings.profiles_collection,
        )

    intents = PendingIntentStore(short_lived, durable, settings=settings, clock=intent_clock)
    resolver = ProfileResolver(profile_store, intents)
    policy = PollPolicy.from_settings(settings)
    timing = {}
    if poll_clock is not None:
        timing["clock"] = poll_clock
    if poll_sleep is not None:
        timing["sleep"] = poll_sleep
    manager = SessionLifecycleManager(
        identity_provider, resolver, intents, settings=settings, retry_policy=policy, **timing
    )
    poller = ResolutionPoller(manager, resolver, identity_provider, policy=policy, **timing)
    router = RedirectRouter(intents, event_joiner, settings=settings)
    flow = AuthCallbackFlow(identity_provider, intents, poller, router)

    return SessionBootstrap(
        settings=settings,
        identity_provider=identity_provider,
        profile_store=profile_store,
        intents=intents,
        resolver=resolver,
        manager=manager,
        poller=poller,
        router=router,
        callback_flow=flow,
    )


# Instance started by ``session_bootstrap.main`` at startup.
bootstrap: Optional[SessionBootstrap] = None
