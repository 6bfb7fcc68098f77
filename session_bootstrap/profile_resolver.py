"""
Profile resolution for a freshly obtained session.

The profile row is created by a backend trigger with unknown delay, so a
lookup can legitimately find nothing. In that case the row is synthesized from
session metadata and the role picked before authentication; a failed insert
still yields a usable (unpersisted) identity.

An existing row keeps its stored role. Only a registration that just happened
(see ``expect_new_profile``) may patch the role the creation trigger defaulted.
"""

import logging
from typing import Any, Dict, Optional, Set

from .exceptions import ProfileLookupError, ProfileStoreError
from .models import ResolvedIdentity, Role, Session, UserRecord
from .pending_intent import PendingIntentStore

logger = logging.getLogger("session_bootstrap.resolver")


class ProfileResolver:
    def __init__(self, profile_store, intents: PendingIntentStore):
        self.profile_store = profile_store
        self.intents = intents
        self._fresh_registrations: Set[str] = set()

    def expect_new_profile(self, user_id: str) -> None:
        """Mark ``user_id`` as just registered; its row may carry a default role."""
        self._fresh_registrations.add(user_id)

    def forget_new_profile(self, user_id: str) -> None:
        self._fresh_registrations.discard(user_id)

    async def resolve(self, session: Session) -> ResolvedIdentity:
        """
        Map a session to a ResolvedIdentity.

        Raises:
            ProfileLookupError: If the lookup itself failed (transient)
        """
        user = session.user or UserRecord(id=session.user_id)
        try:
            row = await self.profile_store.get_by_id(session.user_id)
        except ProfileLookupError:
            raise
        except ProfileStoreError as e:
            raise ProfileLookupError(str(e)) from e

        if row is None:
            logger.info(f"[RESOLVER] No profile row, synthesizing uid={session.user_id}")
            self.forget_new_profile(user.id)
            return await self._synthesize(user)
        if user.id in self._fresh_registrations:
            self.forget_new_profile(user.id)
            return await self._correct_role(row, user)

        if self.intents.peek_pending_role() is not None:
            logger.info(f"[RESOLVER] Existing profile keeps its role uid={user.id}")
            self.intents.clear_pending_role()
        return ResolvedIdentity.from_profile_row(row, user)

    async def _synthesize(self, user: UserRecord) -> ResolvedIdentity:
        role = (
            self.intents.peek_pending_role()
            or Role.parse(user.metadata.get("role"))
            or Role.ATTENDEE
        )
        self.intents.clear_pending_role()

        row: Dict[str, Any] = {
            "id": user.id,
            "name": user.display_name or None,
            "email": user.email,
            "photo_url": user.avatar_url,
            "role": role.value,
        }
        try:
            inserted = await self.profile_store.insert(row)
        except ProfileStoreError as e:
            logger.warning(f"[RESOLVER] Profile insert failed uid={user.id}: {e}")
            return ResolvedIdentity.from_profile_row(row, user, role=role, persisted=False)

        logger.info(f"[RESOLVER] Profile created uid={user.id} role={role.value}")
        return ResolvedIdentity.from_profile_row(inserted or row, user, role=role)

    async def _correct_role(self, row: Dict[str, Any], user: UserRecord) -> ResolvedIdentity:
        # The sign-up metadata carries the chosen role when the slot write was lost
        pending: Optional[Role] = self.intents.peek_pending_role() or Role.parse(user.metadata.get("role"))
        if pending is None:
            return ResolvedIdentity.from_profile_row(row, user)

        self.intents.clear_pending_role()
        current = Role.parse(row.get("role"))
        if current == pending:
            return ResolvedIdentity.from_profile_row(row, user)

        # The creation trigger may have written a default role before ours landed
        logger.info(
            f"[RESOLVER] Correcting role uid={user.id} "
            f"from={current.value if current else None} to={pending.value}"
        )
        try:
            await self.profile_store.update(user.id, {"role": pending.value})
        except ProfileStoreError as e:
            logger.warning(f"[RESOLVER] Role correction failed uid={user.id}: {e}")
            return ResolvedIdentity.from_profile_row(row, user, role=pending, persisted=False)
        return ResolvedIdentity.from_profile_row({**row, "role": pending.value}, user)
