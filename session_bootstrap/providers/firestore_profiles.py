"""
Firestore adapters: profile rows and the join-event action.

The Firestore client is synchronous; calls run in a worker thread so the
event loop keeps serving provider callbacks and poll ticks.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from ..exceptions import JoinEventError, ProfileLookupError, ProfileStoreError
from ..models import JoinResult, ResolvedIdentity

logger = logging.getLogger("session_bootstrap.firestore")


class FirestoreProfileStore:
    """Profile rows in ``{collection}/{user_id}``."""

    def __init__(self, db=None, collection: str = "profiles"):
        self._db = db
        self.collection = collection

    @property
    def db(self):
        if self._db is None:
            from ..firebase_client import get_firestore
            self._db = get_firestore()
        return self._db

    def _doc(self, user_id: str):
        return self.db.collection(self.collection).document(user_id)

    async def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            snapshot = await asyncio.to_thread(self._doc(user_id).get)
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProfileLookupError(f"Profile lookup failed for {user_id}: {e}") from e
        if not snapshot.exists:
            return None
        row = snapshot.to_dict() or {}
        row["id"] = snapshot.id
        return row

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        user_id = row["id"]
        data = {k: v for k, v in row.items() if k != "id"}
        data["created_at"] = SERVER_TIMESTAMP
        data["updated_at"] = SERVER_TIMESTAMP
        try:
            # create() fails if the trigger already wrote the row
            await asyncio.to_thread(self._doc(user_id).create, data)
        except gcp_exceptions.Conflict as e:
            raise ProfileStoreError(f"Profile already exists for {user_id}") from e
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProfileStoreError(f"Profile insert failed for {user_id}: {e}") from e
        logger.info(f"[FIRESTORE] Profile inserted uid={user_id}")
        return dict(row)

    async def update(self, user_id: str, patch: Dict[str, Any]) -> None:
        data = dict(patch)
        data["updated_at"] = SERVER_TIMESTAMP
        try:
            await asyncio.to_thread(self._doc(user_id).update, data)
        except gcp_exceptions.GoogleAPICallError as e:
            raise ProfileStoreError(f"Profile update failed for {user_id}: {e}") from e


class FirestoreEventJoiner:
    """
    Joins an attendee to the event owning an access code.

    Writes ``events/{event_id}/attendees/{uid}`` and points the profile's
    ``current_event_id`` at the event.
    """

    def __init__(self, db=None, events_collection: str = "events", profiles_collection: str = "profiles"):
        self._db = db
        self.events_collection = events_collection
        self.profiles_collection = profiles_collection

    @property
    def db(self):
        if self._db is None:
            from ..firebase_client import get_firestore
            self._db = get_firestore()
        return self._db

    def _join_sync(self, code: str, identity: ResolvedIdentity) -> JoinResult:
        query = (
            self.db.collection(self.events_collection)
            .where(filter=FieldFilter("access_code", "==", code))
            .limit(1)
        )
        matches = list(query.stream())
        if not matches:
            return JoinResult(success=False, message="Invalid access code")

        event = matches[0]
        event_data = event.to_dict() or {}
        event.reference.collection("attendees").document(identity.id).set(
            {
                "user_id": identity.id,
                "name": identity.display_name,
                "joined_at": datetime.now(timezone.utc).isoformat(),
            },
            merge=True,
        )
        self.db.collection(self.profiles_collection).document(identity.id).update(
            {"current_event_id": event.id, "updated_at": SERVER_TIMESTAMP}
        )
        return JoinResult(success=True, event_name=event_data.get("name"))

    async def join(self, code: str, identity: ResolvedIdentity) -> JoinResult:
        try:
            return await asyncio.to_thread(self._join_sync, code, identity)
        except gcp_exceptions.GoogleAPICallError as e:
            raise JoinEventError(f"Join failed for code {code}: {e}") from e
