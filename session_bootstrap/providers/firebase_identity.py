"""
Firebase Auth identity provider.
================================

Client-side calls go through the Identity Toolkit REST API (aiohttp);
server-side checks (token verification, user lookup, revocation, role claim)
go through the Firebase Admin SDK.

The current session is persisted the way the Firebase web SDK does it, under
``firebase:authUser:{api_key}:[DEFAULT]`` in the durable storage scope, so a
sign-out scrub of the provider prefix removes it.

Events pushed to subscribers:
    SIGNED_IN         password sign-in, sign-up, completed OAuth redirect
    TOKEN_REFRESHED   expired ID token exchanged for a fresh one
    SIGNED_OUT        sign_out() or revoked session
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import aiohttp
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from ..exceptions import AuthenticationError, ProviderError, StorageError
from ..logging_setup import mask_token
from ..models import AuthEvent, Session, SignOutScope, UserRecord
from ..ports import AuthStateCallback, Unsubscribe

logger = logging.getLogger("session_bootstrap.firebase_auth")

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Provider ids accepted by sign_in_with_oauth
OAUTH_PROVIDER_IDS = {
    "google": "google.com",
    "github": "github.com",
    "microsoft": "microsoft.com",
    "facebook": "facebook.com",
}

# Parameters the OAuth provider understands; everything else is mirrored on the return URL
_IDP_CUSTOM_PARAMS = ("access_type", "prompt", "login_hint", "hd")


class FirebaseIdentityProvider:
    def __init__(
        self,
        api_key: str,
        storage,
        app=None,
        auth_prefix: str = "firebase:authUser:",
        clock_skew_seconds: int = 5,
    ):
        if not api_key:
            raise ValueError("FIREBASE_API_KEY is required")
        self.api_key = api_key
        self.storage = storage
        self._app = app
        self.auth_prefix = auth_prefix
        self.clock_skew_seconds = clock_skew_seconds
        self._callbacks: List[AuthStateCallback] = []
        # Last known session; survives a local scrub so sign_out can still revoke it
        self._current: Optional[Session] = None

    @property
    def app(self):
        if self._app is None:
            from ..firebase_client import get_firebase_app
            self._app = get_firebase_app()
        return self._app

    @property
    def session_key(self) -> str:
        return f"{self.auth_prefix}{self.api_key}:[DEFAULT]"

    @property
    def pending_redirect_key(self) -> str:
        return f"{self.auth_prefix}{self.api_key}:redirectSession"

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def on_auth_state_change(self, callback: AuthStateCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def _emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event, session)
            except Exception as e:
                logger.error(f"[FIREBASE_AUTH] Subscriber error event={event.value}: {e}", exc_info=True)

    # =========================================================================
    # REST HELPERS
    # =========================================================================

    async def _post(self, url: str, payload: Dict[str, Any], form: bool = False) -> Dict[str, Any]:
        params = {"key": self.api_key}
        try:
            async with aiohttp.ClientSession() as http:
                kwargs = {"data": payload} if form else {"json": payload}
                async with http.post(
                    url, params=params, timeout=aiohttp.ClientTimeout(total=30), **kwargs
                ) as response:
                    body = await response.json(content_type=None)
                    if response.status >= 400:
                        message = (body or {}).get("error", {}).get("message", "UNKNOWN")
                        if response.status < 500:
                            raise AuthenticationError(f"Firebase rejected request: {message}", code=message)
                        raise ProviderError(f"Firebase error {response.status}: {message}", code=message)
                    return body or {}
        except aiohttp.ClientError as e:
            raise ProviderError(f"Firebase transport error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ProviderError("Firebase request timed out") from e

    def _session_from_response(self, body: Dict[str, Any]) -> Session:
        user = UserRecord(
            id=body["localId"],
            email=body.get("email"),
            metadata={
                k: v for k, v in {
                    "name": body.get("displayName"),
                    "avatar_url": body.get("photoUrl"),
                }.items() if v
            },
        )
        expires_in = int(body.get("expiresIn", "3600"))
        return Session(
            user_id=user.id,
            access_token=body["idToken"],
            refresh_token=body.get("refreshToken"),
            expires_at=time.time() + expires_in,
            user=user,
        )

    # =========================================================================
    # LOCAL PERSISTENCE
    # =========================================================================

    def _persist(self, session: Session) -> None:
        data = {
            "uid": session.user_id,
            "idToken": session.access_token,
            "refreshToken": session.refresh_token,
            "expiresAt": session.expires_at,
            "email": session.user.email if session.user else None,
            "metadata": session.user.metadata if session.user else {},
        }
        self._current = session
        try:
            self.storage.set(self.session_key, json.dumps(data))
        except StorageError as e:
            # Signed in for this process only; a restart starts signed out
            logger.error(f"[FIREBASE_AUTH] Session not persisted uid={session.user_id}: {e}")

    def _load(self) -> Optional[Session]:
        raw = self.storage.get(self.session_key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return Session(
                user_id=data["uid"],
                access_token=data["idToken"],
                refresh_token=data.get("refreshToken"),
                expires_at=data.get("expiresAt"),
                user=UserRecord(id=data["uid"], email=data.get("email"), metadata=data.get("metadata") or {}),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[FIREBASE_AUTH] Dropping unreadable persisted session: {e}")
            self.storage.remove(self.session_key)
            return None

    def _clear_local(self) -> None:
        self._current = None
        self.storage.remove(self.session_key)
        self.storage.remove(self.pending_redirect_key)

    # =========================================================================
    # IDENTITY PROVIDER INTERFACE
    # =========================================================================

    async def get_session(self) -> Optional[Session]:
        session = self._load()
        if session is None:
            return None

        try:
            await asyncio.to_thread(
                firebase_auth.verify_id_token,
                session.access_token,
                app=self.app,
                check_revoked=True,
                clock_skew_seconds=self.clock_skew_seconds,
            )
            self._current = session
            return session
        except firebase_auth.ExpiredIdTokenError:
            return await self._refresh(session)
        except (firebase_auth.RevokedIdTokenError, firebase_auth.UserDisabledError) as e:
            logger.warning(f"[FIREBASE_AUTH] Session revoked uid={session.user_id}: {e}")
            self._clear_local()
            self._emit(AuthEvent.SIGNED_OUT, None)
            return None
        except firebase_auth.InvalidIdTokenError as e:
            logger.warning(f"[FIREBASE_AUTH] Invalid persisted token uid={session.user_id}: {e}")
            self._clear_local()
            return None
        except firebase_exceptions.FirebaseError as e:
            raise ProviderError(f"Token verification failed: {e}") from e

    async def _refresh(self, session: Session) -> Optional[Session]:
        if not session.refresh_token:
            self._clear_local()
            return None
        body = await self._post(
            SECURE_TOKEN_URL,
            {"grant_type": "refresh_token", "refresh_token": session.refresh_token},
            form=True,
        )
        refreshed = Session(
            user_id=body.get("user_id", session.user_id),
            access_token=body["id_token"],
            refresh_token=body.get("refresh_token", session.refresh_token),
            expires_at=time.time() + int(body.get("expires_in", "3600")),
            user=session.user,
        )
        self._persist(refreshed)
        logger.info(
            f"[FIREBASE_AUTH] Token refreshed uid={refreshed.user_id} "
            f"token={mask_token(refreshed.access_token)}"
        )
        self._emit(AuthEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def get_user(self) -> Optional[UserRecord]:
        session = self._load()
        if session is None:
            return None
        try:
            record = await asyncio.to_thread(firebase_auth.get_user, session.user_id, app=self.app)
        except firebase_auth.UserNotFoundError:
            return None
        except firebase_exceptions.FirebaseError as e:
            raise ProviderError(f"User lookup failed: {e}") from e

        metadata: Dict[str, Any] = dict(record.custom_claims or {})
        if record.display_name:
            metadata["name"] = record.display_name
        if record.photo_url:
            metadata["avatar_url"] = record.photo_url
        return UserRecord(id=record.uid, email=record.email, metadata=metadata)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        body = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        session = self._session_from_response(body)
        self._persist(session)
        logger.info(f"[FIREBASE_AUTH] Password sign-in uid={session.user_id}")
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[Session]:
        body = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        uid = body["localId"]

        name = metadata.get("name")
        if name:
            await self._post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:update",
                {"idToken": body["idToken"], "displayName": name, "returnSecureToken": False},
            )
            body["displayName"] = name
        role = metadata.get("role")
        if role:
            try:
                await asyncio.to_thread(
                    firebase_auth.set_custom_user_claims, uid, {"role": role}, app=self.app
                )
            except firebase_exceptions.FirebaseError as e:
                # The pending-role slot still carries the role to the resolver
                logger.warning(f"[FIREBASE_AUTH] Role claim failed uid={uid}: {e}")

        session = self._session_from_response(body)
        if role:
            session = Session(
                user_id=session.user_id,
                access_token=session.access_token,
                refresh_token=session.refresh_token,
                expires_at=session.expires_at,
                user=UserRecord(
                    id=uid, email=session.user.email, metadata={**session.user.metadata, "role": role}
                ),
            )
        self._persist(session)
        logger.info(f"[FIREBASE_AUTH] Signed up uid={uid}")
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_in_with_oauth(self, provider: str, redirect_url: str, query_params: Dict[str, str]) -> str:
        provider_id = OAUTH_PROVIDER_IDS.get(provider, provider)
        custom = {k: v for k, v in query_params.items() if k in _IDP_CUSTOM_PARAMS}
        mirrored = {k: v for k, v in query_params.items() if k not in _IDP_CUSTOM_PARAMS}
        continue_uri = redirect_url
        if mirrored:
            sep = "&" if "?" in redirect_url else "?"
            continue_uri = f"{redirect_url}{sep}{urlencode(mirrored)}"

        body = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:createAuthUri",
            {"providerId": provider_id, "continueUri": continue_uri, "customParameter": custom},
        )
        try:
            self.storage.set(
                self.pending_redirect_key,
                json.dumps({"sessionId": body.get("sessionId"), "continueUri": continue_uri}),
            )
        except StorageError as e:
            raise ProviderError(f"OAuth redirect state not stored: {e}") from e
        logger.info(f"[FIREBASE_AUTH] OAuth redirect prepared provider={provider_id}")
        return body["authUri"]

    async def complete_redirect(self, query_params: Mapping[str, str]) -> Optional[Session]:
        if "code" not in query_params and "state" not in query_params:
            return None
        raw = self.storage.get(self.pending_redirect_key)
        if not raw:
            logger.warning("[FIREBASE_AUTH] Redirect returned without a pending OAuth session")
            return None
        pending = json.loads(raw)
        base = pending["continueUri"].split("?", 1)[0]
        request_uri = f"{base}?{urlencode(dict(query_params))}"

        body = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithIdp",
            {
                "requestUri": request_uri,
                "sessionId": pending.get("sessionId"),
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        self.storage.remove(self.pending_redirect_key)
        session = self._session_from_response(body)
        self._persist(session)
        logger.info(f"[FIREBASE_AUTH] OAuth sign-in uid={session.user_id}")
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_out(self, scope: SignOutScope) -> None:
        session = self._current or self._load()
        if scope == SignOutScope.GLOBAL and session is not None:
            try:
                await asyncio.to_thread(firebase_auth.revoke_refresh_tokens, session.user_id, app=self.app)
            except firebase_exceptions.FirebaseError as e:
                raise ProviderError(f"Token revocation failed: {e}") from e
        self._clear_local()
        self._emit(AuthEvent.SIGNED_OUT, None)
