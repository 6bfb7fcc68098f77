"""
Process-wide Firebase Admin app and Firestore client.

Credential sources, first match wins:

    FIREBASE_ADMIN_JSON              inline service-account JSON (CI, local)
    FIREBASE_ADMIN_FILE              path to a service-account key file
    GOOGLE_APPLICATION_CREDENTIALS   same, under the ADC variable name
    emulator                         FIREBASE_AUTH_EMULATOR_HOST / FIRESTORE_EMULATOR_HOST
                                     set: no credentials, anonymous Firestore
    application default              metadata server on Cloud Run / GCE
"""

import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials
from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore
from google.oauth2 import service_account

from .config import Settings, get_settings

logger = logging.getLogger("session_bootstrap.firebase")

EMULATOR_ENV_VARS = ("FIREBASE_AUTH_EMULATOR_HOST", "FIRESTORE_EMULATOR_HOST")

_FIREBASE_APP: Optional[firebase_admin.App] = None
_FIRESTORE_CLIENT: Optional[firestore.Client] = None


def _service_account_info() -> Optional[dict]:
    env_json = os.getenv("FIREBASE_ADMIN_JSON")
    if env_json:
        return json.loads(env_json)

    path = os.getenv("FIREBASE_ADMIN_FILE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if path:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    return None


def using_emulator() -> bool:
    return any(os.getenv(name) for name in EMULATOR_ENV_VARS)


def _project_id(settings: Settings, sa_info: Optional[dict]) -> Optional[str]:
    if settings.google_project_id:
        return settings.google_project_id
    if sa_info:
        return sa_info.get("project_id")
    return None


def get_firebase_app(settings: Optional[Settings] = None) -> firebase_admin.App:
    """
    Initialize (once) and return the default Firebase Admin app.

    Raises:
        RuntimeError: In emulator mode without a project id
    """
    global _FIREBASE_APP
    if _FIREBASE_APP is not None:
        return _FIREBASE_APP

    settings = settings or get_settings()
    sa_info = _service_account_info()
    project = _project_id(settings, sa_info)

    if sa_info is not None:
        cred = credentials.Certificate(sa_info)
        source = "service_account"
    elif using_emulator():
        if not project:
            raise RuntimeError("GOOGLE_PROJECT_ID is required when running against the emulator")
        cred = None
        source = "emulator"
    else:
        cred = credentials.ApplicationDefault()
        source = "application_default"

    options = {"projectId": project} if project else None
    _FIREBASE_APP = firebase_admin.initialize_app(cred, options)
    logger.info(f"[FIREBASE] App initialized project={project} credentials={source}")
    return _FIREBASE_APP


def get_firestore(settings: Optional[Settings] = None) -> firestore.Client:
    global _FIRESTORE_CLIENT
    if _FIRESTORE_CLIENT is not None:
        return _FIRESTORE_CLIENT

    settings = settings or get_settings()
    sa_info = _service_account_info()
    project = _project_id(settings, sa_info)

    if sa_info is not None:
        creds = service_account.Credentials.from_service_account_info(sa_info)
        _FIRESTORE_CLIENT = firestore.Client(project=project, credentials=creds)
    elif os.getenv("FIRESTORE_EMULATOR_HOST"):
        _FIRESTORE_CLIENT = firestore.Client(project=project, credentials=AnonymousCredentials())
    else:
        _FIRESTORE_CLIENT = firestore.Client(project=project)
    logger.info(f"[FIREBASE] Firestore client ready project={project}")
    return _FIRESTORE_CLIENT


def reset_clients() -> None:
    """Forget cached clients (tests, credential rotation). The Admin app is deleted."""
    global _FIREBASE_APP, _FIRESTORE_CLIENT
    if _FIREBASE_APP is not None:
        firebase_admin.delete_app(_FIREBASE_APP)
    _FIREBASE_APP = None
    _FIRESTORE_CLIENT = None
